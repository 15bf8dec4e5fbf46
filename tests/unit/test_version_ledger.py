import asyncio

import pytest

from accessionflow.db import VersionLedger, async_database_url
from accessionflow.db.models import ObjectVersion
from accessionflow.errors import AlreadyOpenError, ObjectNotFoundError, VersionNotOpenError

DRUID = "druid:bc123df4567"


async def _ledger(tmp_path) -> VersionLedger:
    ledger = VersionLedger(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await ledger.init_db()
    return ledger


def test_async_database_url():
    assert async_database_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert async_database_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert async_database_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert async_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


@pytest.mark.asyncio
async def test_register_is_idempotent(tmp_path):
    ledger = await _ledger(tmp_path)

    first = await ledger.register(DRUID)
    again = await ledger.register(DRUID)

    assert first.version == again.version == 1
    assert first.description == "Initial Version"
    assert (await ledger.current(DRUID)).id == first.id


@pytest.mark.asyncio
async def test_current_unknown_object(tmp_path):
    ledger = await _ledger(tmp_path)
    assert await ledger.find_current(DRUID) is None
    with pytest.raises(ObjectNotFoundError):
        await ledger.current(DRUID)


@pytest.mark.asyncio
async def test_open_same_version_twice_fails(tmp_path):
    ledger = await _ledger(tmp_path)
    await ledger.register(DRUID)

    results = await asyncio.gather(
        ledger.open_version(DRUID, 2, description="a"),
        ledger.open_version(DRUID, 2, description="b"),
        return_exceptions=True,
    )
    assert sum(isinstance(r, ObjectVersion) for r in results) == 1
    assert sum(isinstance(r, AlreadyOpenError) for r in results) == 1
    assert (await ledger.current(DRUID)).version == 2


@pytest.mark.asyncio
async def test_close_is_conditional(tmp_path):
    ledger = await _ledger(tmp_path)
    await ledger.register(DRUID)
    await ledger.open_version(DRUID, 2)
    await ledger.update_metadata(DRUID, 2, description="fix title", significance="minor")

    closed = await ledger.close_version(DRUID, 2, closed_by="leland")
    assert closed.closed_at is not None
    assert closed.closed_by == "leland"
    assert closed.description == "fix title"

    with pytest.raises(VersionNotOpenError):
        await ledger.close_version(DRUID, 2)


@pytest.mark.asyncio
async def test_accessioned_milestone_is_set_once(tmp_path):
    ledger = await _ledger(tmp_path)
    await ledger.register(DRUID)
    assert await ledger.is_accessioned(DRUID) is False

    assert await ledger.mark_accessioned(DRUID, 1) is True
    stamped = (await ledger.get(DRUID, 1)).accessioned_at
    assert await ledger.mark_accessioned(DRUID, 1) is False
    assert (await ledger.get(DRUID, 1)).accessioned_at == stamped
    assert await ledger.is_accessioned(DRUID) is True


@pytest.mark.asyncio
async def test_events(tmp_path):
    ledger = await _ledger(tmp_path)
    await ledger.record_event(DRUID, "version_open", {"who": "leland", "version": "2"})
    await ledger.record_event(DRUID, "version_close", {"who": None, "version": "2"})

    events = await ledger.events(DRUID)
    assert [e.event_type for e in events] == ["version_open", "version_close"]
    assert events[0].data["who"] == "leland"
