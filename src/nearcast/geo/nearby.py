"""Nearby user discovery over last-known locations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from nearcast.exceptions import PersistenceError
from nearcast.geo.distance import distance_meters
from nearcast.notifications.store import NotificationStore

logger = structlog.get_logger()

# Locations older than this are ignored by proximity queries.
LOCATION_STALENESS = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NearbyUser:
    """A user within range, with the location the distance was computed from."""

    user_id: str
    distance: float
    latitude: float
    longitude: float
    address: str | None
    updated_at: datetime

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "distance": round(self.distance, 1),
            "last_location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.address,
                "updated_at": self.updated_at.isoformat(),
            },
        }


class NearbyResolver:
    """Finds users whose fresh location lies within a radius of a point."""

    def __init__(self, store: NotificationStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    async def find_nearby(
        self,
        center_lat: float,
        center_lon: float,
        radius_meters: float,
        exclude_user_id: str | None,
    ) -> list[NearbyUser]:
        """Return users within ``radius_meters``, nearest first.

        Lookup failures are logged and reported as no results: proximity is
        best-effort and must not block the action that triggered it.
        """
        if radius_meters <= 0:
            msg = f"radius_meters must be positive, got {radius_meters}"
            raise ValueError(msg)

        cutoff = self._clock() - LOCATION_STALENESS
        try:
            locations = await self._store.list_locations_since(cutoff)
        except PersistenceError:
            logger.error("nearby_lookup_failed", radius=radius_meters, exc_info=True)
            return []

        nearby: list[NearbyUser] = []
        for loc in locations:
            if loc.user_id == exclude_user_id or loc.updated_at < cutoff:
                continue
            distance = distance_meters(center_lat, center_lon, loc.latitude, loc.longitude)
            if distance <= radius_meters:
                nearby.append(
                    NearbyUser(
                        user_id=loc.user_id,
                        distance=distance,
                        latitude=loc.latitude,
                        longitude=loc.longitude,
                        address=loc.address,
                        updated_at=loc.updated_at,
                    )
                )

        nearby.sort(key=lambda u: u.distance)
        return nearby
