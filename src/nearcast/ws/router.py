"""WebSocket endpoint with JWT authentication and action dispatch."""

import json
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from nearcast.auth.jwt import verify_token
from nearcast.dependencies import get_connection_manager, get_coordinator, get_resolver, get_store
from nearcast.exceptions import InvalidPayloadError, NearcastError, NotFoundError
from nearcast.geo.nearby import NearbyResolver
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.service import serialize_notification
from nearcast.notifications.store import NotificationStore
from nearcast.safety.schemas import AlertResponseRequest, EmergencyRequest, SafetyAlertRequest
from nearcast.safety.service import (
    alert_to_dict,
    raise_emergency,
    raise_safety_alert,
    respond_to_alert,
    response_to_dict,
)
from nearcast.ws.manager import ConnectionManager
from nearcast.ws.schemas import (
    CommentPostFrame,
    DirectMessageFrame,
    FriendRequestFrame,
    LikePostFrame,
    LocationUpdateFrame,
    MarkReadFrame,
    NearbyUsersFrame,
    RespondToAlertFrame,
)

logger = structlog.get_logger()

router = APIRouter()


class _Session:
    """Per-connection context handed to the action handlers."""

    def __init__(
        self,
        user_id: str,
        store: NotificationStore,
        coordinator: FanoutCoordinator,
        resolver: NearbyResolver,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.coordinator = coordinator
        self.resolver = resolver

    async def like_post(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = LikePostFrame.model_validate(msg)
        summary = await self.coordinator.notify_like(self.user_id, frame.post_owner_id, frame.post_id)
        return {"type": "like_post_ack", "post_id": frame.post_id, "summary": summary.as_dict()}

    async def comment_post(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = CommentPostFrame.model_validate(msg)
        summary = await self.coordinator.notify_comment(
            self.user_id, frame.post_owner_id, frame.post_id, frame.content
        )
        return {"type": "comment_post_ack", "post_id": frame.post_id, "summary": summary.as_dict()}

    async def friend_request(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = FriendRequestFrame.model_validate(msg)
        summary = await self.coordinator.notify_friend_request(self.user_id, frame.receiver_id, frame.request_id)
        return {"type": "friend_request_ack", "request_id": frame.request_id, "summary": summary.as_dict()}

    async def direct_message(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = DirectMessageFrame.model_validate(msg)
        summary = await self.coordinator.notify_direct_message(
            self.user_id, frame.receiver_id, frame.message_id, frame.content
        )
        return {"type": "direct_message_ack", "message_id": frame.message_id, "summary": summary.as_dict()}

    async def location_update(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = LocationUpdateFrame.model_validate(msg)
        summary = await self.coordinator.notify_location_update(
            self.user_id, frame.latitude, frame.longitude, frame.address
        )
        return {"type": "location_update_ack", "nearby_users": summary.recipients}

    async def request_nearby_users(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = NearbyUsersFrame.model_validate(msg)
        users = await self.resolver.find_nearby(frame.latitude, frame.longitude, frame.radius, self.user_id)
        return {"type": "nearby_users", "users": [u.as_dict() for u in users], "radius": frame.radius}

    async def create_safety_alert(self, msg: dict[str, Any]) -> dict[str, Any]:
        request = SafetyAlertRequest.model_validate(msg)
        alert, summary = await raise_safety_alert(self.store, self.coordinator, self.user_id, request)
        return {
            "type": "safety_alert_created",
            "alert": alert_to_dict(alert),
            "affected_users": summary.recipients,
        }

    async def emergency_call(self, msg: dict[str, Any]) -> dict[str, Any]:
        request = EmergencyRequest.model_validate(msg)
        alert, summary = await raise_emergency(self.store, self.coordinator, self.user_id, request)
        return {
            "type": "emergency_call_sent",
            "alert": alert_to_dict(alert),
            "affected_users": summary.recipients,
        }

    async def respond_to_alert(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = RespondToAlertFrame.model_validate(msg)
        request = AlertResponseRequest(response_type=frame.response_type, comment=frame.comment)
        response, summary = await respond_to_alert(
            self.store, self.coordinator, self.user_id, frame.alert_id, request
        )
        return {
            "type": "response_recorded",
            "response": response_to_dict(response),
            "summary": summary.as_dict(),
        }

    async def mark_notification_read(self, msg: dict[str, Any]) -> dict[str, Any]:
        frame = MarkReadFrame.model_validate(msg)
        notification = await self.coordinator.mark_notification_read(frame.notification_id, self.user_id)
        return {"type": "notification_read", "notification": serialize_notification(notification)}

    async def mark_all_notifications_read(self, _msg: dict[str, Any]) -> dict[str, Any]:
        count = await self.coordinator.mark_all_read(self.user_id)
        return {"type": "all_notifications_read", "updated_count": count}


_ACTIONS = frozenset(
    {
        "like_post",
        "comment_post",
        "friend_request",
        "direct_message",
        "location_update",
        "request_nearby_users",
        "create_safety_alert",
        "emergency_call",
        "respond_to_alert",
        "mark_notification_read",
        "mark_all_notifications_read",
    }
)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    connections: ConnectionManager = Depends(get_connection_manager),
    store: NotificationStore = Depends(get_store),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
    resolver: NearbyResolver = Depends(get_resolver),
) -> None:
    """Single WebSocket endpoint authenticated by a JWT in the query string.

    Protocol:
        Client -> Server:
            {"action": "ping"}
            {"action": "like_post", "post_id": "...", "post_owner_id": "..."}
            {"action": "location_update", "latitude": 40.7, "longitude": -74.0}
            {"action": "mark_all_notifications_read"}
            ...

        Server -> Client:
            {"type": "pong"}
            {"type": "<action>_ack", ...}
            {"type": "notification", "payload": {...}}
            {"type": "error", "message": "..."}
    """
    try:
        payload = verify_token(token)
        user_id = str(payload["sub"])
    except Exception as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    conn_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(user_id=user_id, conn_id=conn_id)
    await connections.connect(websocket, conn_id, user_id)
    session = _Session(user_id, store, coordinator, resolver)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = msg.get("action")

            if action == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if action not in _ACTIONS:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})
                continue

            try:
                reply = await getattr(session, action)(msg)
            except ValidationError as exc:
                await websocket.send_json(
                    {
                        "type": "error",
                        "action": action,
                        "message": "Invalid payload",
                        "errors": exc.errors(include_url=False, include_context=False),
                    }
                )
            except NotFoundError as exc:
                await websocket.send_json({"type": "error", "action": action, "message": str(exc)})
            except InvalidPayloadError as exc:
                await websocket.send_json({"type": "error", "action": action, "message": str(exc)})
            except NearcastError as exc:
                logger.error("ws_action_failed", action=action, error=str(exc))
                await websocket.send_json({"type": "error", "action": action, "message": "Action failed"})
            else:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        await connections.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error")
        await connections.disconnect(conn_id)
