"""Fan a single logical push out to every registered device of a user."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from nearcast.db.models import DeviceToken
from nearcast.exceptions import ConfigurationError, PersistenceError
from nearcast.notifications.analytics import AnalyticsSink
from nearcast.notifications.quiet_hours import is_quiet_now
from nearcast.notifications.store import NotificationStore
from nearcast.push.providers import BasePushGateway, DeliveryReceipt, Priority

logger = structlog.get_logger()


class DispatchStatus(str, Enum):
    SENT = "sent"
    # Suppressed by quiet hours. Not queued; a redelivery worker would pick these up.
    DEFERRED = "deferred"
    FAILED = "failed"


@dataclass
class DispatchResult:
    status: DispatchStatus
    total: int = 0
    successful: int = 0
    failed: int = 0
    receipts: list[DeliveryReceipt] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PushDispatcher:
    """Checks quiet hours, then sends to each device token through its provider."""

    def __init__(
        self,
        store: NotificationStore,
        gateways: dict[str, BasePushGateway],
        analytics: AnalyticsSink,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gateways = gateways
        self._analytics = analytics
        self._clock = clock

    async def dispatch_push(
        self,
        recipient_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        priority: Priority = "normal",
    ) -> DispatchResult:
        """Deliver a push to all of ``recipient_id``'s devices.

        Per-device failures are counted, never raised.

        Raises:
            ConfigurationError: a device needs a provider with no credentials.
        """
        try:
            prefs = await self._store.get_notification_prefs(recipient_id)
        except PersistenceError:
            logger.warning("push_prefs_lookup_failed", recipient_id=recipient_id, exc_info=True)
            prefs = None

        if is_quiet_now(prefs, self._clock()):
            await self._analytics.record(recipient_id, "push_deferred", {"title": title, "data": data or {}})
            logger.info("push_deferred", recipient_id=recipient_id)
            return DispatchResult(status=DispatchStatus.DEFERRED)

        try:
            tokens = await self._store.list_device_tokens(recipient_id)
        except PersistenceError:
            logger.error("push_token_lookup_failed", recipient_id=recipient_id, exc_info=True)
            return DispatchResult(status=DispatchStatus.FAILED)

        if not tokens:
            return DispatchResult(status=DispatchStatus.SENT)

        self._check_configured(tokens)

        receipts = await asyncio.gather(
            *(self._send_one(token, title, body, data, priority) for token in tokens)
        )
        successful = sum(1 for r in receipts if r.success)
        result = DispatchResult(
            status=DispatchStatus.SENT if successful else DispatchStatus.FAILED,
            total=len(receipts),
            successful=successful,
            failed=len(receipts) - successful,
            receipts=list(receipts),
        )
        logger.info("push_dispatched", recipient_id=recipient_id, **result.as_dict())
        return result

    def _check_configured(self, tokens: list[DeviceToken]) -> None:
        for provider in {t.provider for t in tokens}:
            gateway = self._gateways.get(provider)
            if gateway is not None and not gateway.configured:
                logger.critical("push_provider_unconfigured", provider=provider)
                msg = f"{provider} push credentials are not configured"
                raise ConfigurationError(msg)

    async def _send_one(
        self,
        device: DeviceToken,
        title: str,
        body: str,
        data: dict[str, Any] | None,
        priority: Priority,
    ) -> DeliveryReceipt:
        gateway = self._gateways.get(device.provider)
        if gateway is None:
            return DeliveryReceipt(
                provider=device.provider,
                success=False,
                error=f"Unsupported provider: {device.provider}",
                token_id=device.id,
            )
        try:
            receipt = await gateway.send(device.token, title, body, data, priority)
        except Exception as exc:
            logger.warning("push_device_error", provider=device.provider, token_id=device.id, exc_info=True)
            return DeliveryReceipt(provider=device.provider, success=False, error=repr(exc), token_id=device.id)
        return dataclasses.replace(receipt, token_id=device.id)
