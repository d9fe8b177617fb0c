"""Client -> server WebSocket frames."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LikePostFrame(BaseModel):
    post_id: str = Field(..., min_length=1)
    post_owner_id: str = Field(..., min_length=1)


class CommentPostFrame(BaseModel):
    post_id: str = Field(..., min_length=1)
    post_owner_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=2000)


class FriendRequestFrame(BaseModel):
    request_id: str = Field(..., min_length=1)
    receiver_id: str = Field(..., min_length=1)


class DirectMessageFrame(BaseModel):
    message_id: str = Field(..., min_length=1)
    receiver_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=4000)


class LocationUpdateFrame(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str | None = None


class NearbyUsersFrame(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius: int = Field(1000, ge=100, le=10_000)


class RespondToAlertFrame(BaseModel):
    alert_id: str = Field(..., min_length=1)
    response_type: Literal["confirm", "deny", "help_offered"]
    comment: str | None = Field(None, max_length=500)


class MarkReadFrame(BaseModel):
    notification_id: int
