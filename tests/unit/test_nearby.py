"""Tests for the nearby resolver."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, ORIGIN, InMemoryStore
from nearcast.geo.nearby import NearbyResolver

LAT, LON = ORIGIN


class TestFindNearby:
    @pytest.mark.asyncio
    async def test_nearest_first_and_within_radius(self, store: InMemoryStore, resolver: NearbyResolver) -> None:
        store.place("far", LAT + 0.008, LON)  # ~890 m
        store.place("near", LAT + 0.002, LON)  # ~222 m
        store.place("outside", LAT + 0.02, LON)  # ~2.2 km

        users = await resolver.find_nearby(LAT, LON, 1000, exclude_user_id=None)

        assert [u.user_id for u in users] == ["near", "far"]
        assert users[0].distance == pytest.approx(222, rel=0.01)

    @pytest.mark.asyncio
    async def test_excludes_requesting_user(self, store: InMemoryStore, resolver: NearbyResolver) -> None:
        store.place("me", LAT, LON)
        store.place("other", LAT + 0.001, LON)

        users = await resolver.find_nearby(LAT, LON, 1000, exclude_user_id="me")

        assert [u.user_id for u in users] == ["other"]

    @pytest.mark.asyncio
    async def test_stale_locations_ignored(self, store: InMemoryStore, resolver: NearbyResolver) -> None:
        store.place("fresh", LAT, LON, updated_at=FIXED_NOW - timedelta(minutes=4))
        store.place("stale", LAT, LON, updated_at=FIXED_NOW - timedelta(minutes=6))

        users = await resolver.find_nearby(LAT, LON, 1000, exclude_user_id=None)

        assert [u.user_id for u in users] == ["fresh"]

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_empty(self, store: InMemoryStore, resolver: NearbyResolver) -> None:
        store.place("u1", LAT, LON)
        store.fail_location_lookup = True

        assert await resolver.find_nearby(LAT, LON, 1000, exclude_user_id=None) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("radius", [0, -5])
    async def test_non_positive_radius_rejected(self, resolver: NearbyResolver, radius: int) -> None:
        with pytest.raises(ValueError):
            await resolver.find_nearby(LAT, LON, radius, exclude_user_id=None)

    @pytest.mark.asyncio
    async def test_as_dict_shape(self, store: InMemoryStore, resolver: NearbyResolver) -> None:
        store.place("u1", LAT + 0.001, LON)

        (user,) = await resolver.find_nearby(LAT, LON, 1000, exclude_user_id=None)
        data = user.as_dict()

        assert data["user_id"] == "u1"
        assert data["last_location"]["latitude"] == LAT + 0.001
        assert data["last_location"]["updated_at"] == FIXED_NOW.isoformat()
