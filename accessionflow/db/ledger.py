from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, col, select

from ..contracts import utcnow
from ..errors import AlreadyOpenError, ObjectNotFoundError, VersionNotOpenError
from .models import ObjectVersion, VersionEvent

INITIAL_VERSION_DESCRIPTION = "Initial Version"


def async_database_url(url: str) -> str:
    """Map plain ``sqlite://`` / ``postgres://`` URLs onto their async drivers."""
    if url.startswith("sqlite://") and not url.startswith("sqlite+"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return url.replace(prefix, "postgresql+asyncpg://", 1)
    return url


class VersionLedger:
    """Async store of object versions and version events.

    The unique ``(object_id, version)`` constraint and the conditional close
    make open and close safe across processes sharing one database.
    """

    def __init__(self, database_url: str = "sqlite+aiosqlite:///:memory:") -> None:
        url = async_database_url(database_url)
        kwargs: Dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url:
                kwargs["poolclass"] = StaticPool
        self.engine = create_async_engine(url, echo=False, **kwargs)

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    async def register(self, object_id: str) -> ObjectVersion:
        """Create version 1 for a new object; returns the existing head if any."""
        existing = await self.find_current(object_id)
        if existing is not None:
            return existing
        now = utcnow()
        row = ObjectVersion(
            object_id=object_id,
            version=1,
            description=INITIAL_VERSION_DESCRIPTION,
            significance="major",
            opened_at=now,
            closed_at=now,
        )
        try:
            async with self.session() as session:
                session.add(row)
                await session.commit()
        except IntegrityError:
            return await self.current(object_id)
        return row

    async def find_current(self, object_id: str) -> Optional[ObjectVersion]:
        async with self.session() as session:
            result = await session.execute(
                select(ObjectVersion)
                .where(ObjectVersion.object_id == object_id)
                .order_by(col(ObjectVersion.version).desc())
                .limit(1)
            )
            return result.scalars().first()

    async def current(self, object_id: str) -> ObjectVersion:
        row = await self.find_current(object_id)
        if row is None:
            raise ObjectNotFoundError(f"No versions recorded for {object_id}")
        return row

    async def get(self, object_id: str, version: int) -> Optional[ObjectVersion]:
        async with self.session() as session:
            result = await session.execute(
                select(ObjectVersion).where(
                    ObjectVersion.object_id == object_id, ObjectVersion.version == version
                )
            )
            return result.scalars().first()

    async def open_version(
        self,
        object_id: str,
        version: int,
        description: Optional[str] = None,
        significance: Optional[str] = None,
        opened_by: Optional[str] = None,
    ) -> ObjectVersion:
        """Insert ``version``.

        Raises:
            AlreadyOpenError: If another caller already created this version.
        """
        row = ObjectVersion(
            object_id=object_id,
            version=version,
            description=description,
            significance=significance,
            opened_by=opened_by,
        )
        try:
            async with self.session() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as e:
            raise AlreadyOpenError(
                f"Version {version} of {object_id} is already opened"
            ) from e
        return row

    async def update_metadata(
        self,
        object_id: str,
        version: int,
        description: Optional[str] = None,
        significance: Optional[str] = None,
    ) -> ObjectVersion:
        values: Dict[str, Any] = {}
        if description is not None:
            values["description"] = description
        if significance is not None:
            values["significance"] = significance
        if values:
            async with self.session() as session:
                await session.execute(
                    update(ObjectVersion)
                    .where(
                        col(ObjectVersion.object_id) == object_id,
                        col(ObjectVersion.version) == version,
                    )
                    .values(**values)
                )
                await session.commit()
        row = await self.get(object_id, version)
        if row is None:
            raise ObjectNotFoundError(f"Version {version} of {object_id} not found")
        return row

    async def close_version(
        self, object_id: str, version: int, closed_by: Optional[str] = None
    ) -> ObjectVersion:
        """Stamp ``closed_at`` if the version is still open.

        Raises:
            VersionNotOpenError: If the version is missing or was already closed.
        """
        async with self.session() as session:
            result = await session.execute(
                update(ObjectVersion)
                .where(
                    col(ObjectVersion.object_id) == object_id,
                    col(ObjectVersion.version) == version,
                    col(ObjectVersion.closed_at).is_(None),
                )
                .values(closed_at=utcnow(), closed_by=closed_by)
            )
            await session.commit()
        if result.rowcount != 1:
            raise VersionNotOpenError(
                f"Trying to close version {version} on {object_id} which is not opened for versioning"
            )
        row = await self.get(object_id, version)
        if row is None:
            raise ObjectNotFoundError(f"Version {version} of {object_id} not found")
        return row

    async def mark_accessioned(self, object_id: str, version: int) -> bool:
        """Record the accessioned milestone; returns False when already recorded."""
        async with self.session() as session:
            result = await session.execute(
                update(ObjectVersion)
                .where(
                    col(ObjectVersion.object_id) == object_id,
                    col(ObjectVersion.version) == version,
                    col(ObjectVersion.accessioned_at).is_(None),
                )
                .values(accessioned_at=utcnow())
            )
            await session.commit()
        return result.rowcount == 1

    async def is_accessioned(self, object_id: str) -> bool:
        """True once any version of the object has been accessioned."""
        async with self.session() as session:
            result = await session.execute(
                select(ObjectVersion.id)
                .where(
                    ObjectVersion.object_id == object_id,
                    col(ObjectVersion.accessioned_at).is_not(None),
                )
                .limit(1)
            )
            return result.first() is not None

    async def record_event(
        self, object_id: str, event_type: str, data: Optional[dict] = None
    ) -> VersionEvent:
        event = VersionEvent(object_id=object_id, event_type=event_type, data=data or {})
        async with self.session() as session:
            session.add(event)
            await session.commit()
        return event

    async def events(self, object_id: str) -> List[VersionEvent]:
        async with self.session() as session:
            result = await session.execute(
                select(VersionEvent)
                .where(VersionEvent.object_id == object_id)
                .order_by(col(VersionEvent.id))
            )
            return list(result.scalars().all())
