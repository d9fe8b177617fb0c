"""Device registration endpoint."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from nearcast.auth.dependencies import get_current_user_id
from nearcast.dependencies import get_store
from nearcast.notifications.store import NotificationStore

router = APIRouter(prefix="/api/v1", tags=["Push"])


class DeviceRegistrationRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=4096)
    provider: Literal["fcm", "apns"]
    device_kind: Literal["ios", "android"] | None = None


class DeviceTokenResponse(BaseModel):
    id: str
    provider: str
    device_kind: str | None = None
    created_at: datetime | None = None


@router.post("/devices", response_model=DeviceTokenResponse, status_code=201)
async def register_device(
    body: DeviceRegistrationRequest,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
):
    """Register (or refresh) a push token for the caller's device."""
    device = await store.register_device_token(user_id, body.token, body.provider, body.device_kind)
    return DeviceTokenResponse(
        id=device.id,
        provider=device.provider,
        device_kind=device.device_kind,
        created_at=device.created_at,
    )
