"""Do-not-disturb window evaluation.

Preferences look like::

    {"quiet_hours": {"start": "22:00", "end": "06:00", "timezone": "Europe/Berlin"}}

The mobile client stores the same object under ``quietHours``; both keys are
accepted. Anything missing or malformed means "not quiet" so a push is never
dropped because of bad settings.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger()

_PREF_KEYS = ("quiet_hours", "quietHours")


def parse_hhmm(value: str) -> int:
    """Convert "HH:MM" to minute of day. Raises ValueError if malformed."""
    hours_str, minutes_str = value.split(":")
    hours, minutes = int(hours_str), int(minutes_str)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        msg = f"Time out of range: {value!r}"
        raise ValueError(msg)
    return hours * 60 + minutes


def _resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _quiet_window(prefs: Mapping[str, Any]) -> Mapping[str, Any] | None:
    for key in _PREF_KEYS:
        window = prefs.get(key)
        if window:
            return window
    return None


def is_quiet_now(prefs: Mapping[str, Any] | None, now: datetime | None = None) -> bool:
    """Return True if ``now`` falls inside the recipient's quiet hours.

    Boundaries are inclusive. A window with ``start > end`` wraps midnight
    (22:00-06:00 covers 23:30 and 05:59). Equal bounds cover the whole day.
    """
    if not prefs or not isinstance(prefs, Mapping):
        return False
    window = _quiet_window(prefs)
    if not isinstance(window, Mapping):
        return False

    try:
        start = parse_hhmm(window["start"])
        end = parse_hhmm(window["end"])
        tz = _resolve_timezone(window.get("timezone"))
    except (KeyError, TypeError, ValueError, AttributeError, ZoneInfoNotFoundError):
        logger.debug("quiet_hours_malformed", prefs=dict(window))
        return False

    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    local = current.astimezone(tz)
    minute_of_day = local.hour * 60 + local.minute

    if start < end:
        return start <= minute_of_day <= end
    return minute_of_day >= start or minute_of_day <= end
