"""Retention sweep for old notifications."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from nearcast.notifications.store import NotificationStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


async def purge_expired_notifications(
    store: NotificationStore,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: datetime | None = None,
) -> int:
    """Delete notifications created more than ``retention_days`` ago.

    Returns the number of rows removed.
    """
    if retention_days <= 0:
        msg = f"retention_days must be positive, got {retention_days}"
        raise ValueError(msg)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
    deleted = await store.delete_notifications_before(cutoff)
    logger.info("Purged %d notifications older than %s", deleted, cutoff.isoformat())
    return deleted
