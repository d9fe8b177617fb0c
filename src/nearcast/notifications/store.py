"""Persistence interface for notifications, device tokens, locations and alerts.

``NotificationStore`` is the seam the core depends on. ``SqlNotificationStore``
implements it on top of the async SQLAlchemy session factory; tests swap in
an in-memory store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nearcast.db.models import (
    AlertResponse,
    DeviceToken,
    Notification,
    Profile,
    SafetyAlert,
    UserLocation,
    UserSettings,
)
from nearcast.exceptions import PersistenceError, WriteError


class NotificationStore(ABC):
    """Abstract persistence collaborator.

    Every method raises ``PersistenceError`` (or ``WriteError`` for inserts)
    when the backing store fails.
    """

    # --- Notifications ---

    @abstractmethod
    async def insert_notification(
        self,
        *,
        recipient_id: str,
        source_user_id: str | None,
        kind: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> Notification: ...

    @abstractmethod
    async def list_notifications(
        self, recipient_id: str, page: int, per_page: int
    ) -> tuple[list[Notification], int]: ...

    @abstractmethod
    async def count_unread(self, recipient_id: str) -> int: ...

    @abstractmethod
    async def mark_read(self, notification_id: int, recipient_id: str) -> Notification | None:
        """Mark one notification read. Returns None if it is missing or foreign."""

    @abstractmethod
    async def mark_all_read(self, recipient_id: str) -> int: ...

    @abstractmethod
    async def delete_notifications_before(self, cutoff: datetime) -> int: ...

    # --- Preferences & profiles ---

    @abstractmethod
    async def get_notification_prefs(self, user_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def get_display_name(self, user_id: str) -> str | None: ...

    # --- Device tokens ---

    @abstractmethod
    async def list_device_tokens(self, user_id: str) -> list[DeviceToken]: ...

    @abstractmethod
    async def register_device_token(
        self, user_id: str, token: str, provider: str, device_kind: str | None
    ) -> DeviceToken: ...

    # --- Locations ---

    @abstractmethod
    async def list_locations_since(self, since: datetime) -> list[UserLocation]: ...

    @abstractmethod
    async def upsert_location(
        self, user_id: str, latitude: float, longitude: float, address: str | None
    ) -> UserLocation: ...

    # --- Safety alerts ---

    @abstractmethod
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
    ) -> SafetyAlert: ...

    @abstractmethod
    async def get_safety_alert(self, alert_id: str) -> SafetyAlert | None: ...

    @abstractmethod
    async def upsert_alert_response(
        self, *, alert_id: str, user_id: str, response_type: str, comment: str | None
    ) -> AlertResponse:
        """Record a response, replacing the user's earlier response to the same alert."""


class SqlNotificationStore(NotificationStore):
    """``NotificationStore`` backed by PostgreSQL through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(
        self, error_cls: type[PersistenceError] = PersistenceError
    ) -> AsyncIterator[AsyncSession]:
        """Open a session, commit on success and translate driver errors."""
        try:
            async with self._session_factory() as db:
                yield db
                await db.commit()
        except SQLAlchemyError as exc:
            raise error_cls(str(exc)) from exc

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
        notification = Notification(
            user_id=recipient_id,
            source_user_id=source_user_id,
            kind=kind,
            title=title,
            body=body,
            notification_metadata=metadata,
            is_read=False,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session(WriteError) as db:
            db.add(notification)
            await db.flush()
        return notification

    async def list_notifications(
        self, recipient_id: str, page: int, per_page: int
    ) -> tuple[list[Notification], int]:
        offset = (page - 1) * per_page
        async with self._session() as db:
            total_result = await db.execute(
                select(func.count()).select_from(Notification).where(Notification.user_id == recipient_id)
            )
            total = total_result.scalar_one()
            result = await db.execute(
                select(Notification)
                .where(Notification.user_id == recipient_id)
                .order_by(Notification.created_at.desc())
                .offset(offset)
                .limit(per_page)
            )
            notifications = list(result.scalars().all())
        return notifications, total

    async def count_unread(self, recipient_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                select(func.count())
                .select_from(Notification)
                .where(Notification.user_id == recipient_id, Notification.is_read.is_(False))
            )
            return result.scalar_one()

    async def mark_read(self, notification_id: int, recipient_id: str) -> Notification | None:
        async with self._session() as db:
            result = await db.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.user_id == recipient_id)
                .values(is_read=True, read_at=func.coalesce(Notification.read_at, func.now()))
                .returning(Notification)
            )
            return result.scalar_one_or_none()

    async def mark_all_read(self, recipient_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                update(Notification)
                .where(Notification.user_id == recipient_id, Notification.is_read.is_(False))
                .values(is_read=True, read_at=func.now())
            )
            return result.rowcount

    async def delete_notifications_before(self, cutoff: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
            return result.rowcount

    async def get_notification_prefs(self, user_id: str) -> dict[str, Any] | None:
        async with self._session() as db:
            result = await db.execute(
                select(UserSettings.notification_prefs).where(UserSettings.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def get_display_name(self, user_id: str) -> str | None:
        async with self._session() as db:
            result = await db.execute(select(Profile).where(Profile.id == user_id))
            profile = result.scalar_one_or_none()
        if profile is None:
            return None
        return profile.full_name or profile.username

    async def list_device_tokens(self, user_id: str) -> list[DeviceToken]:
        async with self._session() as db:
            result = await db.execute(select(DeviceToken).where(DeviceToken.user_id == user_id))
            return list(result.scalars().all())

    async def register_device_token(
        self, user_id: str, token: str, provider: str, device_kind: str | None
    ) -> DeviceToken:
        stmt = pg_insert(DeviceToken).values(
            user_id=user_id,
            token=token,
            provider=provider,
            device_kind=device_kind,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_device_tokens_user_token",
            set_={"provider": stmt.excluded.provider, "device_kind": stmt.excluded.device_kind},
        ).returning(DeviceToken)
        async with self._session(WriteError) as db:
            result = await db.execute(stmt)
            return result.scalar_one()

    async def list_locations_since(self, since: datetime) -> list[UserLocation]:
        async with self._session() as db:
            result = await db.execute(select(UserLocation).where(UserLocation.updated_at >= since))
            return list(result.scalars().all())

    async def upsert_location(
        self, user_id: str, latitude: float, longitude: float, address: str | None
    ) -> UserLocation:
        stmt = pg_insert(UserLocation).values(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            address=address,
            updated_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserLocation.user_id],
            set_={
                "latitude": stmt.excluded.latitude,
                "longitude": stmt.excluded.longitude,
                "address": stmt.excluded.address,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UserLocation)
        async with self._session(WriteError) as db:
            result = await db.execute(stmt)
            return result.scalar_one()

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
        alert = SafetyAlert(
            created_by=created_by,
            type=type_,
            title=title,
            description=description,
            latitude=latitude,
            longitude=longitude,
            severity=severity,
            affected_area=affected_area,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session(WriteError) as db:
            db.add(alert)
            await db.flush()
        return alert

    async def get_safety_alert(self, alert_id: str) -> SafetyAlert | None:
        async with self._session() as db:
            return await db.get(SafetyAlert, alert_id)

    async def upsert_alert_response(
        self, *, alert_id: str, user_id: str, response_type: str, comment: str | None
    ) -> AlertResponse:
        now = datetime.now(timezone.utc)
        stmt = pg_insert(AlertResponse).values(
            alert_id=alert_id,
            user_id=user_id,
            response_type=response_type,
            comment=comment,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_alert_responses_alert_user",
            set_={
                "response_type": stmt.excluded.response_type,
                "comment": stmt.excluded.comment,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(AlertResponse)
        async with self._session(WriteError) as db:
            result = await db.execute(stmt)
            return result.scalar_one()
