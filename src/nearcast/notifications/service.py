"""Notification creation and read-state service.

Notifications are append-only from the fan-out path: they are created here,
marked read by their recipient, and removed only by the retention sweep.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from nearcast.db.models import Notification
from nearcast.exceptions import NotFoundError
from nearcast.notifications.schemas import (
    NotificationKind,
    NotificationResponse,
    validate_metadata,
)
from nearcast.notifications.store import NotificationStore

logger = logging.getLogger(__name__)


async def create_notification(
    store: NotificationStore,
    recipient_id: str,
    kind: NotificationKind,
    title: str,
    body: str,
    metadata: BaseModel | dict[str, Any],
    source_user_id: str | None = None,
) -> Notification:
    """Persist one notification row and return it.

    Raises:
        InvalidPayloadError: metadata does not match the schema for ``kind``.
        WriteError: the row could not be inserted.
    """
    validated = validate_metadata(kind, metadata)
    return await store.insert_notification(
        recipient_id=recipient_id,
        source_user_id=source_user_id,
        kind=kind.value,
        title=title,
        body=body,
        metadata=validated.model_dump(mode="json"),
    )


async def mark_notification_read(
    store: NotificationStore, notification_id: int, recipient_id: str
) -> Notification:
    """Mark a single notification as read.

    Raises NotFoundError if the notification is missing or belongs to
    another recipient; the row is left untouched in that case.
    """
    notification = await store.mark_read(notification_id, recipient_id)
    if notification is None:
        msg = f"Notification {notification_id} not found"
        raise NotFoundError(msg)
    return notification


async def mark_all_read(store: NotificationStore, recipient_id: str) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    count = await store.mark_all_read(recipient_id)
    logger.info("Marked %d notifications read for %s", count, recipient_id)
    return count


def serialize_notification(notification: Notification) -> dict[str, Any]:
    """Wire representation shared by the REST API and live delivery."""
    return to_response(notification).model_dump(mode="json")


def to_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=str(notification.id),
        kind=notification.kind,
        title=notification.title,
        body=notification.body,
        source_user_id=notification.source_user_id,
        metadata=notification.notification_metadata or {},
        is_read=bool(notification.is_read),
        created_at=notification.created_at,
        read_at=notification.read_at,
    )
