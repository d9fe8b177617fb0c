"""structlog configuration shared by the API process and the retention worker.

structlog events and plain ``logging`` records (workers, arq, uvicorn) go
through the same processor chain and renderer, so both come out as one
stream of JSON or console lines.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from nearcast.config import Settings

# httpx logs every request line at INFO, and APNs URLs embed the device token.
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")

_TOKEN_KEYS = frozenset({"token", "device_token", "push_token"})
_TOKEN_VISIBLE_CHARS = 6


def redact_device_tokens(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]  # noqa: ANN401
) -> MutableMapping[str, Any]:
    """Mask push tokens down to their last few characters."""
    for key in event_dict.keys() & _TOKEN_KEYS:
        value = event_dict[key]
        if isinstance(value, str) and len(value) > _TOKEN_VISIBLE_CHARS:
            event_dict[key] = f"...{value[-_TOKEN_VISIBLE_CHARS:]}"
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog and route stdlib logging through the same renderer."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_device_tokens,
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
