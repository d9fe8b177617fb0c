"""Request id, CORS and logging middleware tests."""

from __future__ import annotations

import uuid

import pytest
import structlog
from fastapi import FastAPI, WebSocket
from httpx import AsyncClient
from starlette.testclient import TestClient

from nearcast.middleware.logging import redact_device_tokens
from nearcast.middleware.request_id import resolve_request_id


@pytest.fixture
def context_app(app: FastAPI) -> FastAPI:
    """The app plus two routes that echo the bound structlog context."""

    @app.get("/_context")
    async def http_context() -> dict[str, object]:
        return structlog.contextvars.get_contextvars()

    @app.websocket("/_context")
    async def ws_context(websocket: WebSocket) -> None:
        await websocket.accept()
        await websocket.send_json(structlog.contextvars.get_contextvars())
        await websocket.close()

    return app


class TestRequestId:
    @pytest.mark.asyncio
    async def test_minted_when_absent(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        uuid.UUID(response.headers["X-Request-Id"])

    @pytest.mark.asyncio
    async def test_client_id_echoed_and_bound(self, client: AsyncClient, context_app: FastAPI) -> None:
        response = await client.get("/_context", headers={"X-Request-Id": "mobile-7f3a.42"})

        assert response.headers["X-Request-Id"] == "mobile-7f3a.42"
        assert response.json() == {"request_id": "mobile-7f3a.42"}

    @pytest.mark.asyncio
    async def test_context_does_not_leak_between_requests(
        self, client: AsyncClient, context_app: FastAPI
    ) -> None:
        structlog.contextvars.bind_contextvars(user_id="stale")

        response = await client.get("/_context")

        assert "user_id" not in response.json()

    @pytest.mark.asyncio
    async def test_error_responses_carry_the_id(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/notifications", headers={"X-Request-Id": "req-404"})

        assert response.status_code in (401, 403)
        assert response.headers["X-Request-Id"] == "req-404"

    def test_websocket_sessions_get_an_id(self, context_app: FastAPI) -> None:
        with TestClient(context_app) as client:
            with client.websocket_connect("/_context", headers={"X-Request-Id": "ws-1"}) as ws:
                assert ws.receive_json() == {"request_id": "ws-1"}

    @pytest.mark.parametrize(
        "incoming",
        [None, "", "has spaces", "line\nbreak", "x" * 129, '{"json":1}'],
    )
    def test_malformed_ids_replaced(self, incoming: str | None) -> None:
        request_id = resolve_request_id(incoming)

        assert request_id != incoming
        uuid.UUID(request_id)


class TestCors:
    @pytest.mark.asyncio
    async def test_preflight_from_app_origin(self, client: AsyncClient) -> None:
        response = await client.options(
            "/api/v1/notifications",
            headers={
                "Origin": "http://localhost:19006",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:19006"
        assert "access-control-allow-credentials" not in response.headers

    @pytest.mark.asyncio
    async def test_unknown_origin_rejected(self, client: AsyncClient) -> None:
        response = await client.options(
            "/api/v1/notifications",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code == 400


class TestRedactDeviceTokens:
    def test_tokens_masked(self) -> None:
        event = {"event": "push_sent", "token": "fcm-abcdefghijklmnop", "device_token": "0123456789abcdef"}

        redacted = redact_device_tokens(None, "info", event)

        assert redacted["token"] == "...klmnop"
        assert redacted["device_token"] == "...abcdef"

    def test_other_keys_and_short_values_untouched(self) -> None:
        event = {"event": "push_sent", "token": "abc", "token_id": "0f8e2a9c-1111-2222-3333-444455556666"}

        assert redact_device_tokens(None, "info", dict(event)) == event
