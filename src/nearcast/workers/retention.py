"""arq worker for the nightly notification retention sweep.

Runs as a separate process from the API.
"""

from __future__ import annotations

import logging

from arq import cron

from nearcast.config import get_settings
from nearcast.database import close_db, get_session_factory, init_db
from nearcast.middleware.logging import setup_logging
from nearcast.notifications.retention import purge_expired_notifications
from nearcast.notifications.store import NotificationStore, SqlNotificationStore

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Set up logging and the database-backed store."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["store"] = SqlNotificationStore(get_session_factory())
    ctx["retention_days"] = settings.notification_retention_days
    logger.info("Retention worker started (retention=%d days)", settings.notification_retention_days)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Retention worker shut down")


async def purge_notifications(ctx: dict) -> int:  # type: ignore[type-arg]
    """Delete notifications past the retention window."""
    store: NotificationStore = ctx["store"]
    return await purge_expired_notifications(store, ctx["retention_days"])


class WorkerSettings:
    """arq worker settings for the retention sweep."""

    functions = [purge_notifications]
    cron_jobs = [
        cron(purge_notifications, hour={3}, minute={15}, run_at_startup=False),  # 03:15 UTC daily
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 1
