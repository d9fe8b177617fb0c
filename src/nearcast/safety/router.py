"""Location and safety API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from nearcast.auth.dependencies import get_current_user_id
from nearcast.dependencies import get_coordinator, get_resolver, get_store
from nearcast.geo.nearby import NearbyResolver
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.store import NotificationStore
from nearcast.safety.schemas import (
    AlertResponseRequest,
    AlertResponseResult,
    EmergencyRequest,
    LocationUpdateRequest,
    LocationUpdateResponse,
    NearbyUsersResponse,
    SafetyAlertRequest,
    SafetyAlertResponse,
)
from nearcast.safety.service import (
    alert_to_dict,
    raise_emergency,
    raise_safety_alert,
    respond_to_alert,
    response_to_dict,
)

router = APIRouter(prefix="/api/v1", tags=["Location & Safety"])


@router.post("/location", response_model=LocationUpdateResponse)
async def update_location(
    body: LocationUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Store the caller's location and notify nearby online users."""
    summary = await coordinator.notify_location_update(user_id, body.latitude, body.longitude, body.address)
    return LocationUpdateResponse(nearby_users=summary.recipients)


@router.get("/location/nearby", response_model=NearbyUsersResponse)
async def nearby_users(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: int = Query(1000, ge=100, le=10_000),
    user_id: str = Depends(get_current_user_id),
    resolver: NearbyResolver = Depends(get_resolver),
):
    """Users with a fresh location within ``radius`` meters, nearest first."""
    users = await resolver.find_nearby(latitude, longitude, radius, user_id)
    return NearbyUsersResponse(users=[u.as_dict() for u in users], count=len(users), radius=radius)


@router.post("/safety/alerts", response_model=SafetyAlertResponse, status_code=201)
async def create_safety_alert(
    body: SafetyAlertRequest,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Record a safety alert and notify users inside its affected area."""
    alert, summary = await raise_safety_alert(store, coordinator, user_id, body)
    return SafetyAlertResponse(
        alert=alert_to_dict(alert),
        affected_users=summary.recipients,
        summary=summary.as_dict(),
    )


@router.post("/safety/emergency", response_model=SafetyAlertResponse, status_code=201)
async def emergency_call(
    body: EmergencyRequest,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Record an emergency call and alert everyone within 5 km."""
    alert, summary = await raise_emergency(store, coordinator, user_id, body)
    return SafetyAlertResponse(
        alert=alert_to_dict(alert),
        affected_users=summary.recipients,
        summary=summary.as_dict(),
    )


@router.post("/safety/alerts/{alert_id}/respond", response_model=AlertResponseResult)
async def respond_to_safety_alert(
    alert_id: str,
    body: AlertResponseRequest,
    user_id: str = Depends(get_current_user_id),
    store: NotificationStore = Depends(get_store),
    coordinator: FanoutCoordinator = Depends(get_coordinator),
):
    """Confirm, deny or offer help on an alert; the alert's creator is notified."""
    response, summary = await respond_to_alert(store, coordinator, user_id, alert_id, body)
    return AlertResponseResult(response=response_to_dict(response), summary=summary.as_dict())
