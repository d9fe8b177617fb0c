"""Notification kinds, per-kind metadata schemas and API models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from nearcast.exceptions import InvalidPayloadError


class NotificationKind(str, Enum):
    LIKE = "like"
    COMMENT = "comment"
    FRIEND_REQUEST = "friend_request"
    DM = "dm"
    SAFETY_ALERT = "safety_alert"
    EMERGENCY = "emergency"
    MENTION = "mention"
    ALERT_RESPONSE = "alert_response"


# --- Metadata, one schema per kind ---


class LikeMetadata(BaseModel):
    post_id: str


class CommentMetadata(BaseModel):
    post_id: str
    comment_preview: str = Field(..., max_length=140)


class FriendRequestMetadata(BaseModel):
    request_id: str


class DirectMessageMetadata(BaseModel):
    message_id: str
    preview: str = Field(..., max_length=140)


class SafetyAlertMetadata(BaseModel):
    alert_id: str | None = None
    alert_type: Literal["emergency", "warning", "info"]
    severity: Literal["low", "medium", "high"]
    latitude: float
    longitude: float
    distance_m: float


class EmergencyMetadata(BaseModel):
    alert_id: str | None = None
    message: str
    latitude: float
    longitude: float
    distance_m: float


class MentionMetadata(BaseModel):
    post_id: str
    comment_id: str | None = None


class AlertResponseMetadata(BaseModel):
    alert_id: str
    response_type: Literal["confirm", "deny", "help_offered"]
    comment_preview: str | None = Field(None, max_length=140)


METADATA_SCHEMAS: dict[NotificationKind, type[BaseModel]] = {
    NotificationKind.LIKE: LikeMetadata,
    NotificationKind.COMMENT: CommentMetadata,
    NotificationKind.FRIEND_REQUEST: FriendRequestMetadata,
    NotificationKind.DM: DirectMessageMetadata,
    NotificationKind.SAFETY_ALERT: SafetyAlertMetadata,
    NotificationKind.EMERGENCY: EmergencyMetadata,
    NotificationKind.MENTION: MentionMetadata,
    NotificationKind.ALERT_RESPONSE: AlertResponseMetadata,
}


def validate_metadata(kind: NotificationKind, metadata: BaseModel | dict[str, Any]) -> BaseModel:
    """Check that ``metadata`` matches the schema registered for ``kind``."""
    schema = METADATA_SCHEMAS[kind]
    if isinstance(metadata, schema):
        return metadata
    if isinstance(metadata, BaseModel):
        metadata = metadata.model_dump()
    try:
        return schema.model_validate(metadata)
    except ValidationError as exc:
        msg = f"Invalid {kind.value} metadata: {exc.errors(include_url=False)}"
        raise InvalidPayloadError(msg) from exc


class SafetyAlertPayload(BaseModel):
    """Caller-supplied description of a safety alert."""

    alert_id: str | None = None
    type: Literal["emergency", "warning", "info"] = "warning"
    title: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(None, max_length=2000)
    severity: Literal["low", "medium", "high"] = "medium"


# --- API ---


class NotificationResponse(BaseModel):
    id: str
    kind: str
    title: str
    body: str
    source_user_id: str | None = None
    metadata: dict[str, Any] = {}
    is_read: bool
    created_at: datetime | None = None
    read_at: datetime | None = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated_count: int
