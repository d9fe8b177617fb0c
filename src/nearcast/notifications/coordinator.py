"""Realtime fan-out of domain events to notifications, live sockets and push.

For every recipient of an event the coordinator:

1. writes a Notification row,
2. emits the event over the recipient's live connections, if any,
3. hands the push to the dispatcher, whether or not step 2 reached anyone.

Live and push delivery overlap; clients dedupe by notification
id. Recipients are processed concurrently and independently: a failure for
one is logged and never stops the others or the action that triggered the
event.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from nearcast.db.models import Notification
from nearcast.exceptions import (
    ConfigurationError,
    InvalidPayloadError,
    PersistenceError,
    WriteError,
)
from nearcast.geo.nearby import NearbyResolver
from nearcast.notifications import service
from nearcast.notifications.schemas import (
    NotificationKind,
    SafetyAlertPayload,
    validate_metadata,
)
from nearcast.notifications.store import NotificationStore
from nearcast.push.dispatcher import DispatchStatus, PushDispatcher
from nearcast.push.providers import Priority
from nearcast.ws.manager import ConnectionManager

logger = structlog.get_logger()

PROXIMITY_RADIUS_METERS = 1_000
SAFETY_ALERT_DEFAULT_RADIUS_METERS = 1_000
EMERGENCY_RADIUS_METERS = 5_000
EMERGENCY_DEFAULT_MESSAGE = "Someone nearby has made an emergency call"

PREVIEW_MAX_CHARS = 140

_RESPONSE_VERBS = {
    "confirm": "confirmed",
    "deny": "disputed",
    "help_offered": "offered help with",
}


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_MAX_CHARS:
        return text
    return text[: PREVIEW_MAX_CHARS - 3] + "..."


@dataclass
class FanoutSummary:
    """Counts for one fan-out, returned to the caller."""

    event: str
    recipients: int = 0
    notifications: int = 0
    live: int = 0
    pushes: int = 0
    deferred: int = 0
    delivered_devices: int = 0
    failed_devices: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "recipients": self.recipients,
            "notifications": self.notifications,
            "live": self.live,
            "pushes": self.pushes,
            "deferred": self.deferred,
            "delivered_devices": self.delivered_devices,
            "failed_devices": self.failed_devices,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class _Delivery:
    recipient_id: str
    kind: NotificationKind
    title: str
    body: str
    metadata: BaseModel
    live_event: str
    live_extra: dict[str, Any] = field(default_factory=dict)
    priority: Priority = "normal"


class FanoutCoordinator:
    """Entry point for every notification-producing domain event."""

    def __init__(
        self,
        store: NotificationStore,
        registry: ConnectionManager,
        dispatcher: PushDispatcher,
        resolver: NearbyResolver,
    ) -> None:
        self._store = store
        self._registry = registry
        self._dispatcher = dispatcher
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Single-recipient events
    # ------------------------------------------------------------------

    async def notify_like(self, actor_id: str, post_owner_id: str, post_id: str) -> FanoutSummary:
        summary = FanoutSummary(event="like")
        if actor_id == post_owner_id:
            return summary
        metadata = validate_metadata(NotificationKind.LIKE, {"post_id": post_id})
        name = await self._display_name(actor_id)
        await self._fan_out(
            actor_id,
            [
                _Delivery(
                    recipient_id=post_owner_id,
                    kind=NotificationKind.LIKE,
                    title="New Like",
                    body=f"{name} liked your post",
                    metadata=metadata,
                    live_event="notification",
                    live_extra={"kind": "like", "from_user_id": actor_id, "post_id": post_id},
                )
            ],
            summary,
        )
        return summary

    async def notify_comment(
        self, actor_id: str, post_owner_id: str, post_id: str, comment_text: str
    ) -> FanoutSummary:
        summary = FanoutSummary(event="comment")
        if actor_id == post_owner_id:
            return summary
        preview = _preview(comment_text)
        metadata = validate_metadata(
            NotificationKind.COMMENT, {"post_id": post_id, "comment_preview": preview}
        )
        name = await self._display_name(actor_id)
        await self._fan_out(
            actor_id,
            [
                _Delivery(
                    recipient_id=post_owner_id,
                    kind=NotificationKind.COMMENT,
                    title="New Comment",
                    body=f"{name} commented: {preview}",
                    metadata=metadata,
                    live_event="notification",
                    live_extra={"kind": "comment", "from_user_id": actor_id, "post_id": post_id},
                )
            ],
            summary,
        )
        return summary

    async def notify_friend_request(self, actor_id: str, receiver_id: str, request_id: str) -> FanoutSummary:
        summary = FanoutSummary(event="friend_request")
        if actor_id == receiver_id:
            return summary
        metadata = validate_metadata(NotificationKind.FRIEND_REQUEST, {"request_id": request_id})
        name = await self._display_name(actor_id)
        await self._fan_out(
            actor_id,
            [
                _Delivery(
                    recipient_id=receiver_id,
                    kind=NotificationKind.FRIEND_REQUEST,
                    title="Friend Request",
                    body=f"{name} sent you a friend request",
                    metadata=metadata,
                    live_event="notification",
                    live_extra={"kind": "friend_request", "from_user_id": actor_id, "request_id": request_id},
                )
            ],
            summary,
        )
        return summary

    async def notify_direct_message(
        self, actor_id: str, receiver_id: str, message_id: str, preview: str
    ) -> FanoutSummary:
        summary = FanoutSummary(event="dm")
        if actor_id == receiver_id:
            return summary
        short = _preview(preview)
        metadata = validate_metadata(NotificationKind.DM, {"message_id": message_id, "preview": short})
        name = await self._display_name(actor_id)
        await self._fan_out(
            actor_id,
            [
                _Delivery(
                    recipient_id=receiver_id,
                    kind=NotificationKind.DM,
                    title=f"Message from {name}",
                    body=short,
                    metadata=metadata,
                    live_event="notification",
                    live_extra={"kind": "dm", "from_user_id": actor_id, "message_id": message_id},
                    priority="high",
                )
            ],
            summary,
        )
        return summary

    # ------------------------------------------------------------------
    # Location-scoped events
    # ------------------------------------------------------------------

    async def notify_location_update(
        self, actor_id: str, lat: float, lon: float, address: str | None = None
    ) -> FanoutSummary:
        """Store the actor's position and tell online users within 1 km.

        ``user_nearby`` is a live-only signal: no Notification row, no push.
        """
        summary = FanoutSummary(event="user_nearby")
        try:
            await self._store.upsert_location(actor_id, lat, lon, address)
        except PersistenceError:
            logger.error("location_upsert_failed", user_id=actor_id, exc_info=True)
            summary.errors += 1
        self._registry.update_location(actor_id, lat, lon)

        nearby = await self._resolver.find_nearby(lat, lon, PROXIMITY_RADIUS_METERS, actor_id)
        summary.recipients = len(nearby)
        online = [u for u in nearby if self._registry.is_online(u.user_id)]
        reached = await asyncio.gather(
            *(
                self._registry.emit(
                    u.user_id,
                    "user_nearby",
                    {
                        "user_id": actor_id,
                        "distance": round(u.distance, 1),
                        "location": {"latitude": lat, "longitude": lon},
                    },
                )
                for u in online
            ),
            return_exceptions=True,
        )
        summary.live = sum(1 for r in reached if isinstance(r, int) and r > 0)
        logger.info("fanout_complete", actor_id=actor_id, summary=summary.as_dict())
        return summary

    async def notify_safety_alert(
        self,
        actor_id: str,
        lat: float,
        lon: float,
        radius_meters: float | None,
        alert_payload: SafetyAlertPayload | dict[str, Any],
    ) -> FanoutSummary:
        summary = FanoutSummary(event="safety_alert")
        alert = self._validate_alert(alert_payload)
        radius = SAFETY_ALERT_DEFAULT_RADIUS_METERS if radius_meters is None else radius_meters
        if radius <= 0:
            msg = f"affected_area must be positive, got {radius}"
            raise InvalidPayloadError(msg)

        priority: Priority = "high" if alert.severity == "high" or alert.type == "emergency" else "normal"
        nearby = await self._resolver.find_nearby(lat, lon, radius, actor_id)
        deliveries = [
            _Delivery(
                recipient_id=user.user_id,
                kind=NotificationKind.SAFETY_ALERT,
                title=alert.title,
                body=alert.description or f"{alert.type.capitalize()} alert {round(user.distance)} m from you",
                metadata=validate_metadata(
                    NotificationKind.SAFETY_ALERT,
                    {
                        "alert_id": alert.alert_id,
                        "alert_type": alert.type,
                        "severity": alert.severity,
                        "latitude": lat,
                        "longitude": lon,
                        "distance_m": round(user.distance, 1),
                    },
                ),
                live_event="safety_alert",
                live_extra={
                    "alert": {**alert.model_dump(), "latitude": lat, "longitude": lon, "affected_area": radius},
                    "distance": round(user.distance, 1),
                    "created_by": actor_id,
                },
                priority=priority,
            )
            for user in nearby
        ]
        await self._fan_out(actor_id, deliveries, summary)
        return summary

    async def notify_emergency(
        self,
        actor_id: str,
        lat: float,
        lon: float,
        message: str | None,
        alert_id: str | None = None,
    ) -> FanoutSummary:
        """Broadcast an emergency call to everyone within 5 km, whatever the caller asked for."""
        summary = FanoutSummary(event="emergency")
        text = message or EMERGENCY_DEFAULT_MESSAGE
        nearby = await self._resolver.find_nearby(lat, lon, EMERGENCY_RADIUS_METERS, actor_id)
        deliveries = [
            _Delivery(
                recipient_id=user.user_id,
                kind=NotificationKind.EMERGENCY,
                title="Emergency Alert",
                body=f"{text} ({round(user.distance)} m away)",
                metadata=validate_metadata(
                    NotificationKind.EMERGENCY,
                    {
                        "alert_id": alert_id,
                        "message": text,
                        "latitude": lat,
                        "longitude": lon,
                        "distance_m": round(user.distance, 1),
                    },
                ),
                live_event="emergency_alert",
                live_extra={
                    "alert_id": alert_id,
                    "caller_id": actor_id,
                    "distance": round(user.distance, 1),
                    "location": {"latitude": lat, "longitude": lon},
                },
                priority="high",
            )
            for user in nearby
        ]
        await self._fan_out(actor_id, deliveries, summary)
        return summary

    async def notify_alert_response(
        self,
        actor_id: str,
        alert_creator_id: str,
        alert_id: str,
        alert_title: str,
        response_type: str,
        comment: str | None = None,
    ) -> FanoutSummary:
        """Tell the creator of a safety alert that someone responded to it."""
        summary = FanoutSummary(event="alert_response")
        if actor_id == alert_creator_id:
            return summary
        preview = _preview(comment) if comment else None
        metadata = validate_metadata(
            NotificationKind.ALERT_RESPONSE,
            {"alert_id": alert_id, "response_type": response_type, "comment_preview": preview},
        )
        name = await self._display_name(actor_id)
        verb = _RESPONSE_VERBS.get(response_type, "responded to")
        await self._fan_out(
            actor_id,
            [
                _Delivery(
                    recipient_id=alert_creator_id,
                    kind=NotificationKind.ALERT_RESPONSE,
                    title="Alert Response",
                    body=f"{name} {verb} your alert: {alert_title}",
                    metadata=metadata,
                    live_event="alert_response",
                    live_extra={
                        "alert_id": alert_id,
                        "responder_id": actor_id,
                        "response_type": response_type,
                        "comment": comment,
                    },
                    priority="high" if response_type == "help_offered" else "normal",
                )
            ],
            summary,
        )
        return summary

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    async def mark_notification_read(self, notification_id: int, recipient_id: str) -> Notification:
        return await service.mark_notification_read(self._store, notification_id, recipient_id)

    async def mark_all_read(self, recipient_id: str) -> int:
        return await service.mark_all_read(self._store, recipient_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_alert(payload: SafetyAlertPayload | dict[str, Any]) -> SafetyAlertPayload:
        if isinstance(payload, SafetyAlertPayload):
            return payload
        try:
            return SafetyAlertPayload.model_validate(payload)
        except ValidationError as exc:
            msg = f"Invalid safety alert payload: {exc.errors(include_url=False)}"
            raise InvalidPayloadError(msg) from exc

    async def _display_name(self, user_id: str) -> str:
        try:
            name = await self._store.get_display_name(user_id)
        except PersistenceError:
            logger.warning("display_name_lookup_failed", user_id=user_id, exc_info=True)
            name = None
        return name or "Someone"

    async def _fan_out(self, actor_id: str, deliveries: list[_Delivery], summary: FanoutSummary) -> None:
        summary.recipients = len(deliveries)
        results = await asyncio.gather(
            *(self._deliver(actor_id, d, summary) for d in deliveries),
            return_exceptions=True,
        )
        for delivery, result in zip(deliveries, results):
            if isinstance(result, BaseException):
                summary.errors += 1
                logger.error(
                    "fanout_recipient_failed",
                    fanout_event=summary.event,
                    recipient_id=delivery.recipient_id,
                    exc_info=result,
                )
        logger.info("fanout_complete", actor_id=actor_id, summary=summary.as_dict())

    async def _deliver(self, actor_id: str, delivery: _Delivery, summary: FanoutSummary) -> None:
        try:
            notification = await service.create_notification(
                self._store,
                delivery.recipient_id,
                delivery.kind,
                delivery.title,
                delivery.body,
                delivery.metadata,
                source_user_id=actor_id,
            )
        except WriteError:
            logger.warning(
                "notification_write_failed",
                kind=delivery.kind.value,
                recipient_id=delivery.recipient_id,
                exc_info=True,
            )
            summary.errors += 1
            return
        summary.notifications += 1

        serialized = service.serialize_notification(notification)
        if self._registry.is_online(delivery.recipient_id):
            reached = await self._registry.emit(
                delivery.recipient_id,
                delivery.live_event,
                {**delivery.live_extra, "notification": serialized},
            )
            if reached:
                summary.live += 1

        try:
            result = await self._dispatcher.dispatch_push(
                delivery.recipient_id,
                delivery.title,
                delivery.body,
                data={"notification_id": serialized["id"], "kind": delivery.kind.value},
                priority=delivery.priority,
            )
        except ConfigurationError:
            logger.error("push_misconfigured", recipient_id=delivery.recipient_id, exc_info=True)
            summary.errors += 1
            return

        summary.pushes += 1
        if result.status is DispatchStatus.DEFERRED:
            summary.deferred += 1
        summary.delivered_devices += result.successful
        summary.failed_devices += result.failed
