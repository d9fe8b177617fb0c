"""Record safety alerts and the responses to them, then fan them out.

Recording the alert or response is the primary action and its failure propagates.
Fan-out afterwards is best-effort.
"""

from __future__ import annotations

from typing import Any

from nearcast.db.models import AlertResponse, SafetyAlert
from nearcast.exceptions import NotFoundError
from nearcast.notifications.coordinator import (
    EMERGENCY_DEFAULT_MESSAGE,
    EMERGENCY_RADIUS_METERS,
    FanoutCoordinator,
    FanoutSummary,
)
from nearcast.notifications.schemas import SafetyAlertPayload
from nearcast.notifications.store import NotificationStore
from nearcast.safety.schemas import AlertResponseRequest, EmergencyRequest, SafetyAlertRequest


def alert_to_dict(alert: SafetyAlert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "type": alert.type,
        "title": alert.title,
        "description": alert.description,
        "latitude": alert.latitude,
        "longitude": alert.longitude,
        "severity": alert.severity,
        "affected_area": alert.affected_area,
        "created_by": alert.created_by,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }


def response_to_dict(response: AlertResponse) -> dict[str, Any]:
    return {
        "id": response.id,
        "alert_id": response.alert_id,
        "user_id": response.user_id,
        "response_type": response.response_type,
        "comment": response.comment,
        "updated_at": response.updated_at.isoformat() if response.updated_at else None,
    }


async def raise_safety_alert(
    store: NotificationStore,
    coordinator: FanoutCoordinator,
    actor_id: str,
    request: SafetyAlertRequest,
) -> tuple[SafetyAlert, FanoutSummary]:
    alert = await store.create_safety_alert(
        created_by=actor_id,
        type_=request.type,
        title=request.title,
        description=request.description,
        latitude=request.latitude,
        longitude=request.longitude,
        severity=request.severity,
        affected_area=request.affected_area,
    )
    summary = await coordinator.notify_safety_alert(
        actor_id,
        request.latitude,
        request.longitude,
        request.affected_area,
        SafetyAlertPayload(
            alert_id=alert.id,
            type=request.type,
            title=request.title,
            description=request.description,
            severity=request.severity,
        ),
    )
    return alert, summary


async def raise_emergency(
    store: NotificationStore,
    coordinator: FanoutCoordinator,
    actor_id: str,
    request: EmergencyRequest,
) -> tuple[SafetyAlert, FanoutSummary]:
    message = request.message or EMERGENCY_DEFAULT_MESSAGE
    alert = await store.create_safety_alert(
        created_by=actor_id,
        type_="emergency",
        title="Emergency Call",
        description=message,
        latitude=request.latitude,
        longitude=request.longitude,
        severity="high",
        affected_area=EMERGENCY_RADIUS_METERS,
    )
    summary = await coordinator.notify_emergency(
        actor_id, request.latitude, request.longitude, message, alert_id=alert.id
    )
    return alert, summary


async def respond_to_alert(
    store: NotificationStore,
    coordinator: FanoutCoordinator,
    actor_id: str,
    alert_id: str,
    request: AlertResponseRequest,
) -> tuple[AlertResponse, FanoutSummary]:
    """Record the actor's response to an alert and tell the alert's creator.

    A second response from the same user replaces the first.
    """
    alert = await store.get_safety_alert(alert_id)
    if alert is None:
        msg = f"Safety alert {alert_id} not found"
        raise NotFoundError(msg)
    response = await store.upsert_alert_response(
        alert_id=alert.id,
        user_id=actor_id,
        response_type=request.response_type,
        comment=request.comment,
    )
    summary = await coordinator.notify_alert_response(
        actor_id,
        alert.created_by,
        alert.id,
        alert.title,
        request.response_type,
        request.comment,
    )
    return response, summary
