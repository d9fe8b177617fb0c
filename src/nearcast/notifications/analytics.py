"""Fire-and-forget analytics sink."""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


class AnalyticsSink(ABC):
    """Accepts analytics events. ``record`` must not raise."""

    @abstractmethod
    async def record(self, user_id: str, event: str, props: dict[str, Any] | None = None) -> None: ...

    async def ping(self) -> None:
        """Raise if the backing store is unreachable."""

    async def aclose(self) -> None:
        """Release any connections held by the sink."""


class RedisAnalyticsSink(AnalyticsSink):
    """Append analytics events to a capped Redis stream.

    The sink owns its connection pool when built with :meth:`from_url`;
    ``aclose`` releases it.
    """

    def __init__(self, client: redis.Redis, stream: str = "analytics:events", maxlen: int = 100_000) -> None:
        self._redis = client
        self.stream = stream
        self.maxlen = maxlen

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        stream: str = "analytics:events",
        maxlen: int = 100_000,
        max_connections: int = 20,
    ) -> RedisAnalyticsSink:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=max_connections,
        )
        return cls(client, stream=stream, maxlen=maxlen)

    async def record(self, user_id: str, event: str, props: dict[str, Any] | None = None) -> None:
        fields = {
            "event": event,
            "user_id": user_id,
            "ts": str(time.time()),
            "props": json.dumps(props or {}, default=str),
        }
        try:
            await self._redis.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        except Exception:
            logger.warning("analytics_record_failed", analytics_event=event, user_id=user_id, exc_info=True)

    async def ping(self) -> None:
        await self._redis.ping()

    async def aclose(self) -> None:
        await self._redis.aclose()
