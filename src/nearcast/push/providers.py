"""
Push gateways with provider abstraction.

Supports Firebase Cloud Messaging (HTTP v1) and Apple Push Notification
service (HTTP/2, token auth). Gateways report ordinary delivery failures in
the returned receipt instead of raising.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

import httpx
import jwt
import structlog

from nearcast.config import Settings
from nearcast.exceptions import TransientDeliveryError

logger = structlog.get_logger()

Priority = Literal["high", "normal"]

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
APNS_HOST = "https://api.push.apple.com"
APNS_SANDBOX_HOST = "https://api.sandbox.push.apple.com"
APNS_TOKEN_TTL_SECONDS = 50 * 60


@dataclass(frozen=True)
class DeliveryReceipt:
    """Outcome of one delivery attempt to one device."""

    provider: str
    success: bool
    message_id: str | None = None
    error: str | None = None
    token_id: str | None = None


def _stringify(data: dict[str, Any] | None) -> dict[str, str]:
    """FCM data payloads only carry string values."""
    return {key: value if isinstance(value, str) else str(value) for key, value in (data or {}).items()}


class BasePushGateway(ABC):
    """Abstract base class for push delivery providers."""

    provider: str

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when every credential the provider needs is present."""

    @abstractmethod
    async def _deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        priority: Priority,
    ) -> str | None:
        """Send one push. Returns a provider message id, raises TransientDeliveryError."""

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        priority: Priority = "normal",
    ) -> DeliveryReceipt:
        """Send one push and report the outcome without raising."""
        try:
            message_id = await self._deliver(token, title, body, data, priority)
        except TransientDeliveryError as exc:
            logger.warning("push_send_failed", provider=self.provider, token=token, error=str(exc))
            return DeliveryReceipt(provider=self.provider, success=False, error=str(exc))
        logger.debug("push_sent", provider=self.provider, message_id=message_id)
        return DeliveryReceipt(provider=self.provider, success=True, message_id=message_id)

    async def _post(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        try:
            response = await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{self.provider} request failed: {exc!r}"
            raise TransientDeliveryError(msg) from exc
        if response.is_error:
            msg = f"{self.provider} request failed: {response.status_code} {response.text[:200]}"
            raise TransientDeliveryError(msg)
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"{self.provider} returned a non-JSON body: {response.text[:200]!r}"
            raise TransientDeliveryError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"{self.provider} returned an unexpected body: {payload!r}"
            raise TransientDeliveryError(msg)
        return payload


class FCMGateway(BasePushGateway):
    """Send pushes via the FCM HTTP v1 API using a service account."""

    provider = "fcm"

    def __init__(
        self,
        project_id: str,
        client_email: str,
        private_key: str,
        client: httpx.AsyncClient,
        token_uri: str = "https://oauth2.googleapis.com/token",
    ) -> None:
        self.project_id = project_id
        self.client_email = client_email
        self.private_key = private_key.replace("\\n", "\n")
        self.token_uri = token_uri
        self._client = client
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.client_email and self.private_key)

    async def _get_access_token(self) -> str:
        """Exchange a signed service-account assertion for an OAuth2 token (cached)."""
        now = time.time()
        if self._access_token and now < self._access_token_expires_at - 60:
            return self._access_token

        assertion = jwt.encode(
            {
                "iss": self.client_email,
                "scope": FCM_SCOPE,
                "aud": self.token_uri,
                "iat": int(now),
                "exp": int(now) + 3600,
            },
            self.private_key,
            algorithm="RS256",
        )
        response = await self._post(
            self._client,
            self.token_uri,
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": assertion,
            },
        )
        payload = self._json(response)
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            msg = "fcm token exchange returned no access_token"
            raise TransientDeliveryError(msg)
        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600
        self._access_token = access_token
        self._access_token_expires_at = now + expires_in
        return self._access_token

    async def _deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        priority: Priority,
    ) -> str | None:
        access_token = await self._get_access_token()
        message = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": _stringify(data),
                "android": {
                    "priority": "HIGH" if priority == "high" else "NORMAL",
                    "notification": {"channel_id": "default", "sound": "default"},
                },
            }
        }
        response = await self._post(
            self._client,
            f"https://fcm.googleapis.com/v1/projects/{self.project_id}/messages:send",
            headers={"Authorization": f"Bearer {access_token}"},
            json=message,
        )
        return self._json(response).get("name")


class APNsGateway(BasePushGateway):
    """Send pushes via APNs with an ES256 provider token."""

    provider = "apns"

    def __init__(
        self,
        key_id: str,
        team_id: str,
        bundle_id: str,
        private_key: str,
        client: httpx.AsyncClient,
        use_sandbox: bool = False,
    ) -> None:
        self.key_id = key_id
        self.team_id = team_id
        self.bundle_id = bundle_id
        self.private_key = private_key.replace("\\n", "\n")
        self.host = APNS_SANDBOX_HOST if use_sandbox else APNS_HOST
        self._client = client
        self._provider_token: str | None = None
        self._provider_token_issued_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.team_id and self.bundle_id and self.private_key)

    def _get_provider_token(self) -> str:
        now = time.time()
        if self._provider_token and now - self._provider_token_issued_at < APNS_TOKEN_TTL_SECONDS:
            return self._provider_token
        self._provider_token = jwt.encode(
            {"iss": self.team_id, "iat": int(now)},
            self.private_key,
            algorithm="ES256",
            headers={"kid": self.key_id},
        )
        self._provider_token_issued_at = now
        return self._provider_token

    async def _deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        priority: Priority,
    ) -> str | None:
        payload = {
            "aps": {
                "alert": {"title": title, "body": body},
                "sound": "default",
                "badge": 1,
                "content-available": 1,
            },
            **(data or {}),
        }
        response = await self._post(
            self._client,
            f"{self.host}/3/device/{token}",
            headers={
                "authorization": f"bearer {self._get_provider_token()}",
                "apns-topic": self.bundle_id,
                "apns-push-type": "alert",
                "apns-priority": "10" if priority == "high" else "5",
            },
            json=payload,
        )
        return response.headers.get("apns-id")


def create_gateways(settings: Settings, client: httpx.AsyncClient) -> dict[str, BasePushGateway]:
    """Build both gateways from configuration. Missing credentials leave a gateway unconfigured."""
    return {
        "fcm": FCMGateway(
            project_id=settings.fcm_project_id,
            client_email=settings.fcm_client_email,
            private_key=settings.fcm_private_key,
            client=client,
            token_uri=settings.fcm_token_uri,
        ),
        "apns": APNsGateway(
            key_id=settings.apns_key_id,
            team_id=settings.apns_team_id,
            bundle_id=settings.apns_bundle_id,
            private_key=settings.apns_private_key,
            client=client,
            use_sandbox=settings.apns_use_sandbox,
        ),
    }
