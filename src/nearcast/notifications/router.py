"""Notification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from nearcast.auth.dependencies import get_current_user_id
from nearcast.dependencies import get_coordinator, get_store
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.schemas import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from nearcast.notifications.service import to_response
from nearcast.notifications.store import NotificationStore

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
):
    """List the caller's notifications, most recent first."""
    notifications, total = await store.list_notifications(user_id, page, per_page)
    return NotificationListResponse(
        notifications=[to_response(n) for n in notifications],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_notification_count(
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
):
    count = await store.count_unread(user_id)
    return UnreadCountResponse(unread_count=count)


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Mark all of the caller's notifications as read."""
    count = await coordinator.mark_all_read(user_id)
    return MarkAllReadResponse(updated_count=count)


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    user_id: str = Depends(get_current_user_id),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Mark a notification as read. 404 if it is missing or not the caller's."""
    notification = await coordinator.mark_notification_read(notification_id, user_id)
    return to_response(notification)
