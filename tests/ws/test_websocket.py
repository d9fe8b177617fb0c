"""WebSocket integration tests: auth, actions and live delivery."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from conftest import ORIGIN, FakeGateway, InMemoryStore
from nearcast.config import get_settings

LAT, LON = ORIGIN


@pytest.fixture
def test_client(app: FastAPI) -> Iterator[TestClient]:
    """Sync TestClient sharing one event loop across sockets."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def expired_ws_token() -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": "alice",
        "aud": settings.jwt_audience,
        "iat": now - timedelta(hours=2),
        "exp": now - timedelta(hours=1),
    }
    return pyjwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class TestWebSocketAuth:
    def test_connect_with_valid_token(self, test_client: TestClient, make_token: Callable[[str], str]) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_connect_with_invalid_token(self, test_client: TestClient) -> None:
        with pytest.raises(Exception):
            with test_client.websocket_connect("/ws?token=invalid.jwt.token") as ws:
                ws.receive_json()

    def test_connect_with_expired_token(self, test_client: TestClient, expired_ws_token: str) -> None:
        with pytest.raises(Exception):
            with test_client.websocket_connect(f"/ws?token={expired_ws_token}") as ws:
                ws.receive_json()


class TestWebSocketProtocol:
    def test_invalid_json(self, test_client: TestClient, make_token: Callable[[str], str]) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as ws:
            ws.send_text("not valid json {{{")
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "Invalid JSON" in data["message"]

    def test_unknown_action(self, test_client: TestClient, make_token: Callable[[str], str]) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as ws:
            ws.send_json({"action": "explode"})
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "Unknown action" in data["message"]

    def test_invalid_payload(self, test_client: TestClient, make_token: Callable[[str], str]) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as ws:
            ws.send_json({"action": "like_post", "post_id": "p1"})
            data = ws.receive_json()
            assert data["type"] == "error"
            assert data["action"] == "like_post"
            assert data["errors"]

    def test_mark_foreign_notification_read(
        self, test_client: TestClient, store: InMemoryStore, make_token: Callable[[str], str]
    ) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as ws:
            ws.send_json({"action": "mark_notification_read", "notification_id": 12345})
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "not found" in data["message"]


class TestLiveDelivery:
    def test_like_reaches_online_owner(
        self,
        test_client: TestClient,
        store: InMemoryStore,
        gateways: dict[str, FakeGateway],
        make_token: Callable[[str], str],
    ) -> None:
        store.names["alice"] = "Alice"
        store.add_token("bob", "tok-bob")
        with (
            test_client.websocket_connect(f"/ws?token={make_token('bob')}") as bob,
            test_client.websocket_connect(f"/ws?token={make_token('alice')}") as alice,
        ):
            alice.send_json({"action": "like_post", "post_id": "p1", "post_owner_id": "bob"})

            event = bob.receive_json()
            assert event["type"] == "notification"
            assert event["payload"]["kind"] == "like"
            assert event["payload"]["notification"]["body"] == "Alice liked your post"

            ack = alice.receive_json()
            assert ack["type"] == "like_post_ack"
            assert ack["summary"]["live"] == 1
            assert ack["summary"]["pushes"] == 1

        assert len(gateways["fcm"].sent) == 1

    def test_mark_read_over_socket(
        self, test_client: TestClient, store: InMemoryStore, make_token: Callable[[str], str]
    ) -> None:
        with test_client.websocket_connect(f"/ws?token={make_token('bob')}") as bob:
            with test_client.websocket_connect(f"/ws?token={make_token('alice')}") as alice:
                alice.send_json({"action": "friend_request", "request_id": "r1", "receiver_id": "bob"})
                event = bob.receive_json()
                alice.receive_json()
            notification_id = int(event["payload"]["notification"]["id"])

            bob.send_json({"action": "mark_notification_read", "notification_id": notification_id})
            reply = bob.receive_json()
            assert reply["type"] == "notification_read"
            assert reply["notification"]["is_read"] is True

            bob.send_json({"action": "mark_all_notifications_read"})
            assert bob.receive_json() == {"type": "all_notifications_read", "updated_count": 0}

    def test_emergency_call_alerts_neighbours(
        self, test_client: TestClient, store: InMemoryStore, make_token: Callable[[str], str]
    ) -> None:
        store.place("neighbour", LAT + 0.01, LON)
        with (
            test_client.websocket_connect(f"/ws?token={make_token('neighbour')}") as neighbour,
            test_client.websocket_connect(f"/ws?token={make_token('caller')}") as caller,
        ):
            caller.send_json({"action": "emergency_call", "latitude": LAT, "longitude": LON})

            event = neighbour.receive_json()
            assert event["type"] == "emergency_alert"
            assert event["payload"]["caller_id"] == "caller"

            reply = caller.receive_json()
            assert reply["type"] == "emergency_call_sent"
            assert reply["affected_users"] == 1
            assert reply["alert"]["severity"] == "high"

        assert len(store.alerts) == 1

    def test_location_update_and_nearby_request(
        self, test_client: TestClient, store: InMemoryStore, make_token: Callable[[str], str]
    ) -> None:
        store.place("bob", LAT + 0.002, LON)
        with (
            test_client.websocket_connect(f"/ws?token={make_token('bob')}") as bob,
            test_client.websocket_connect(f"/ws?token={make_token('alice')}") as alice,
        ):
            alice.send_json({"action": "location_update", "latitude": LAT, "longitude": LON})
            event = bob.receive_json()
            assert event["type"] == "user_nearby"
            assert event["payload"]["user_id"] == "alice"
            assert alice.receive_json() == {"type": "location_update_ack", "nearby_users": 1}

            alice.send_json({"action": "request_nearby_users", "latitude": LAT, "longitude": LON, "radius": 500})
            reply = alice.receive_json()
            assert reply["type"] == "nearby_users"
            assert [u["user_id"] for u in reply["users"]] == ["bob"]

    def test_alert_response_reaches_creator(
        self, test_client: TestClient, store: InMemoryStore, make_token: Callable[[str], str]
    ) -> None:
        with (
            test_client.websocket_connect(f"/ws?token={make_token('alice')}") as alice,
            test_client.websocket_connect(f"/ws?token={make_token('bob')}") as bob,
        ):
            alice.send_json({"action": "create_safety_alert", "title": "Flooding", "latitude": LAT, "longitude": LON})
            alert_id = alice.receive_json()["alert"]["id"]

            bob.send_json({"action": "respond_to_alert", "alert_id": alert_id, "response_type": "confirm"})
            event = alice.receive_json()
            assert event["type"] == "alert_response"
            assert event["payload"]["responder_id"] == "bob"
            assert event["payload"]["notification"]["kind"] == "alert_response"

            reply = bob.receive_json()
            assert reply["type"] == "response_recorded"
            assert reply["response"]["response_type"] == "confirm"

        assert len(store.responses) == 1
