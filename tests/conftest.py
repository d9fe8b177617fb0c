"""Shared test fixtures.

The core is exercised against in-memory collaborators; nothing here needs
PostgreSQL or Redis.
"""

from __future__ import annotations

import itertools
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from nearcast.auth.jwt import create_access_token
from nearcast.db.models import AlertResponse, DeviceToken, Notification, SafetyAlert, UserLocation
from nearcast.exceptions import PersistenceError, TransientDeliveryError, WriteError
from nearcast.geo.nearby import NearbyResolver
from nearcast.main import create_app
from nearcast.notifications.analytics import AnalyticsSink
from nearcast.notifications.coordinator import FanoutCoordinator
from nearcast.notifications.store import NotificationStore
from nearcast.push.dispatcher import PushDispatcher
from nearcast.push.providers import BasePushGateway, Priority
from nearcast.ws.manager import ConnectionManager

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

# Times Square and a few points around it.
ORIGIN = (40.7580, -73.9855)


class InMemoryStore(NotificationStore):
    """Dict-backed store with switches for simulating failures."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now
        self.notifications: dict[int, Notification] = {}
        self.prefs: dict[str, dict[str, Any]] = {}
        self.names: dict[str, str] = {}
        self.tokens: list[DeviceToken] = []
        self.locations: dict[str, UserLocation] = {}
        self.alerts: list[SafetyAlert] = []
        self.responses: dict[tuple[str, str], AlertResponse] = {}
        self.fail_writes_for: set[str] = set()
        self.fail_token_lookup = False
        self.fail_prefs_lookup = False
        self.fail_location_lookup = False
        self.fail_alert_write = False
        self._ids = itertools.count(1)

    # --- helpers for tests ---

    def add_token(self, user_id: str, token: str, provider: str = "fcm") -> DeviceToken:
        device = DeviceToken(
            id=str(uuid.uuid4()), user_id=user_id, token=token, provider=provider, created_at=self.now
        )
        self.tokens.append(device)
        return device

    def place(self, user_id: str, lat: float, lon: float, updated_at: datetime | None = None) -> None:
        self.locations[user_id] = UserLocation(
            user_id=user_id,
            latitude=lat,
            longitude=lon,
            address=None,
            updated_at=updated_at or self.now,
        )

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.notifications.values() if n.user_id == user_id]

    # --- NotificationStore ---

    async def insert_notification(
        self,
        *,
        recipient_id: str,
        source_user_id: str | None,
        kind: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> Notification:
        if recipient_id in self.fail_writes_for:
            msg = f"insert failed for {recipient_id}"
            raise WriteError(msg)
        notification = Notification(
            id=next(self._ids),
            user_id=recipient_id,
            source_user_id=source_user_id,
            kind=kind,
            title=title,
            body=body,
            notification_metadata=metadata,
            is_read=False,
            created_at=self.now,
            read_at=None,
        )
        self.notifications[notification.id] = notification
        return notification

    async def list_notifications(
        self, recipient_id: str, page: int, per_page: int
    ) -> tuple[list[Notification], int]:
        rows = sorted(self.for_user(recipient_id), key=lambda n: (n.created_at, n.id), reverse=True)
        start = (page - 1) * per_page
        return rows[start : start + per_page], len(rows)

    async def count_unread(self, recipient_id: str) -> int:
        return sum(1 for n in self.for_user(recipient_id) if not n.is_read)

    async def mark_read(self, notification_id: int, recipient_id: str) -> Notification | None:
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != recipient_id:
            return None
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = self.now
        return notification

    async def mark_all_read(self, recipient_id: str) -> int:
        count = 0
        for notification in self.for_user(recipient_id):
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = self.now
                count += 1
        return count

    async def delete_notifications_before(self, cutoff: datetime) -> int:
        expired = [nid for nid, n in self.notifications.items() if n.created_at < cutoff]
        for nid in expired:
            del self.notifications[nid]
        return len(expired)

    async def get_notification_prefs(self, user_id: str) -> dict[str, Any] | None:
        if self.fail_prefs_lookup:
            msg = "prefs lookup failed"
            raise PersistenceError(msg)
        return self.prefs.get(user_id)

    async def get_display_name(self, user_id: str) -> str | None:
        return self.names.get(user_id)

    async def list_device_tokens(self, user_id: str) -> list[DeviceToken]:
        if self.fail_token_lookup:
            msg = "token lookup failed"
            raise PersistenceError(msg)
        return [t for t in self.tokens if t.user_id == user_id]

    async def register_device_token(
        self, user_id: str, token: str, provider: str, device_kind: str | None
    ) -> DeviceToken:
        for device in self.tokens:
            if device.user_id == user_id and device.token == token:
                device.provider = provider
                device.device_kind = device_kind
                return device
        device = DeviceToken(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            provider=provider,
            device_kind=device_kind,
            created_at=self.now,
        )
        self.tokens.append(device)
        return device

    async def list_locations_since(self, since: datetime) -> list[UserLocation]:
        if self.fail_location_lookup:
            msg = "location lookup failed"
            raise PersistenceError(msg)
        return [loc for loc in self.locations.values() if loc.updated_at >= since]

    async def upsert_location(
        self, user_id: str, latitude: float, longitude: float, address: str | None
    ) -> UserLocation:
        loc = UserLocation(
            user_id=user_id, latitude=latitude, longitude=longitude, address=address, updated_at=self.now
        )
        self.locations[user_id] = loc
        return loc

    async def create_safety_alert(
        self,
        *,
        created_by: str,
        type_: str,
        title: str,
        description: str | None,
        latitude: float,
        longitude: float,
        severity: str,
        affected_area: int,
    ) -> SafetyAlert:
        if self.fail_alert_write:
            msg = "alert insert failed"
            raise WriteError(msg)
        alert = SafetyAlert(
            id=str(uuid.uuid4()),
            type=type_,
            title=title,
            description=description,
            latitude=latitude,
            longitude=longitude,
            severity=severity,
            affected_area=affected_area,
            created_by=created_by,
            created_at=self.now,
        )
        self.alerts.append(alert)
        return alert

    async def get_safety_alert(self, alert_id: str) -> SafetyAlert | None:
        return next((a for a in self.alerts if a.id == alert_id), None)

    async def upsert_alert_response(
        self, *, alert_id: str, user_id: str, response_type: str, comment: str | None
    ) -> AlertResponse:
        if self.fail_alert_write:
            msg = "alert response insert failed"
            raise WriteError(msg)
        response = self.responses.get((alert_id, user_id))
        if response is None:
            response = AlertResponse(
                id=str(uuid.uuid4()), alert_id=alert_id, user_id=user_id, created_at=self.now
            )
            self.responses[(alert_id, user_id)] = response
        response.response_type = response_type
        response.comment = comment
        response.updated_at = self.now
        return response


class FakeGateway(BasePushGateway):
    """Records sends; tokens listed in ``failing`` raise a transient error."""

    def __init__(self, provider: str = "fcm", *, configured: bool = True, failing: set[str] | None = None) -> None:
        self.provider = provider
        self._configured = configured
        self.failing = failing or set()
        self.sent: list[dict[str, Any]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def _deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        priority: Priority,
    ) -> str | None:
        if token in self.failing:
            msg = f"{self.provider} request failed: 503"
            raise TransientDeliveryError(msg)
        self.sent.append({"token": token, "title": title, "body": body, "data": data, "priority": priority})
        return f"msg-{len(self.sent)}"


class FakeAnalytics(AnalyticsSink):
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    async def record(self, user_id: str, event: str, props: dict[str, Any] | None = None) -> None:
        self.events.append((user_id, event, props or {}))


class FakeRegistry:
    """Stand-in for ConnectionManager that records emitted events."""

    def __init__(self, online: set[str] | None = None) -> None:
        self.online = online or set()
        self.emitted: list[tuple[str, str, dict[str, Any]]] = []
        self.locations: dict[str, tuple[float, float]] = {}

    def is_online(self, user_id: str) -> bool:
        return user_id in self.online

    def update_location(self, user_id: str, latitude: float, longitude: float) -> None:
        self.locations[user_id] = (latitude, longitude)

    async def emit(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        if user_id not in self.online:
            return 0
        self.emitted.append((user_id, event, payload))
        return 1


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def gateways() -> dict[str, FakeGateway]:
    return {"fcm": FakeGateway("fcm"), "apns": FakeGateway("apns")}


@pytest.fixture
def analytics() -> FakeAnalytics:
    return FakeAnalytics()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def dispatcher(
    store: InMemoryStore,
    gateways: dict[str, FakeGateway],
    analytics: FakeAnalytics,
    clock: Callable[[], datetime],
) -> PushDispatcher:
    return PushDispatcher(store, gateways, analytics, clock=clock)


@pytest.fixture
def resolver(store: InMemoryStore, clock: Callable[[], datetime]) -> NearbyResolver:
    return NearbyResolver(store, clock=clock)


@pytest.fixture
def coordinator(
    store: InMemoryStore,
    registry: FakeRegistry,
    dispatcher: PushDispatcher,
    resolver: NearbyResolver,
) -> FanoutCoordinator:
    return FanoutCoordinator(store, registry, dispatcher, resolver)  # type: ignore[arg-type]


@pytest.fixture
def make_token() -> Callable[[str], str]:
    """Mint a valid access token for a user id."""
    return lambda user_id: create_access_token(user_id)


@asynccontextmanager
async def _no_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield


@pytest.fixture
def app(
    store: InMemoryStore, analytics: FakeAnalytics, dispatcher: PushDispatcher, resolver: NearbyResolver
) -> FastAPI:
    """The real app wired to in-memory collaborators and a live ConnectionManager."""
    app = create_app()
    app.router.lifespan_context = _no_lifespan
    connections = ConnectionManager()
    app.state.store = store
    app.state.connections = connections
    app.state.analytics = analytics
    app.state.resolver = resolver
    app.state.coordinator = FanoutCoordinator(store, connections, dispatcher, resolver)
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the in-memory app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(make_token: Callable[[str], str]) -> Callable[[str], dict[str, str]]:
    return lambda user_id: {"Authorization": f"Bearer {make_token(user_id)}"}
