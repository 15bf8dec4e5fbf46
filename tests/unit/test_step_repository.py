"""Tests shared by the in-memory and SQLite step repositories."""

import asyncio
from datetime import timedelta

import pytest

from accessionflow.constants import COMPLETED, ERROR, QUEUED, SKIPPED, STARTED, WAITING
from accessionflow.contracts import WorkflowStep, utcnow
from accessionflow.definitions import DefinitionCache, initial_steps
from accessionflow.errors import ConflictError, StepNotFoundError
from accessionflow.persistence import InMemoryStepRepository, SQLiteStepRepository

DRUID = "druid:bc123df4567"


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryStepRepository()
    return SQLiteStepRepository(tmp_path / "steps.db")


def _accession_steps(version=1, object_id=DRUID):
    definition = DefinitionCache().load("accessionWF")
    return initial_steps(definition, object_id, version)


@pytest.mark.asyncio
async def test_create_workflow_is_idempotent(repo):
    first = await repo.create_workflow(_accession_steps())
    again = await repo.create_workflow(_accession_steps())

    assert [s.id for s in again] == [s.id for s in first]
    assert len(await repo.list_steps(DRUID)) == len(first)


@pytest.mark.asyncio
async def test_new_version_becomes_active(repo):
    await repo.create_workflow(_accession_steps(version=1))
    await repo.create_workflow(_accession_steps(version=2))

    old = await repo.list_steps(DRUID, version=1)
    new = await repo.list_steps(DRUID, version=2)
    assert not any(s.active_version for s in old)
    assert all(s.active_version for s in new)


@pytest.mark.asyncio
async def test_get_step_defaults_to_newest_version(repo):
    await repo.create_workflow(_accession_steps(version=1))
    await repo.create_workflow(_accession_steps(version=2))

    assert (await repo.get_step(DRUID, "accessionWF", "stage")).version == 2
    assert (await repo.get_step(DRUID, "accessionWF", "stage", version=1)).version == 1


@pytest.mark.asyncio
async def test_missing_step_raises_not_found(repo):
    with pytest.raises(StepNotFoundError) as exc:
        await repo.get_step(DRUID, "accessionWF", "stage")
    assert exc.value.status == 404

    with pytest.raises(StepNotFoundError):
        await repo.update_status(DRUID, "accessionWF", "stage", COMPLETED)


@pytest.mark.asyncio
async def test_update_status_compare_and_set(repo):
    await repo.create_workflow(_accession_steps())

    with pytest.raises(ConflictError) as exc:
        await repo.update_status(
            DRUID, "accessionWF", "stage", COMPLETED, expected_status=QUEUED
        )
    assert exc.value.status == 409
    assert (await repo.get_step(DRUID, "accessionWF", "stage")).status == WAITING

    step = await repo.update_status(
        DRUID, "accessionWF", "stage", STARTED, expected_status=WAITING
    )
    assert step.status == STARTED


@pytest.mark.asyncio
async def test_started_counts_attempts_and_completed_at_is_set_once(repo):
    await repo.create_workflow(_accession_steps())

    await repo.update_status(DRUID, "accessionWF", "stage", STARTED)
    await repo.update_status(DRUID, "accessionWF", "stage", STARTED)
    done = await repo.update_status(
        DRUID, "accessionWF", "stage", COMPLETED, elapsed=1.5, note="ok", lifecycle="staged"
    )
    assert done.attempts == 2
    assert done.elapsed == 1.5
    assert done.note == "ok"
    assert done.lifecycle == "staged"
    first_completed = done.completed_at
    assert first_completed is not None

    again = await repo.update_status(DRUID, "accessionWF", "stage", COMPLETED)
    assert again.completed_at == first_completed
    stored = await repo.get_step(DRUID, "accessionWF", "stage")
    assert stored.completed_at == first_completed


@pytest.mark.asyncio
async def test_update_error_then_retry_clears_error(repo):
    await repo.create_workflow(_accession_steps())

    failed = await repo.update_error(DRUID, "accessionWF", "shelve", "boom", "trace")
    assert failed.status == ERROR
    assert failed.error_message == "boom"
    assert failed.error_text == "trace"

    retried = await repo.update_status(DRUID, "accessionWF", "shelve", WAITING)
    assert retried.error_message is None
    assert retried.error_text is None


@pytest.mark.asyncio
async def test_claim_only_transitions_waiting_rows(repo):
    await repo.create_workflow(_accession_steps())
    await repo.update_status(DRUID, "accessionWF", "shelve", STARTED)

    claimed = await repo.claim_waiting(
        DRUID, "accessionWF", 1, ["stage", "shelve", "start-accession"]
    )
    assert [s.process for s in claimed] == ["stage"]
    assert all(s.status == QUEUED for s in claimed)
    assert (await repo.get_step(DRUID, "accessionWF", "shelve")).status == STARTED

    assert await repo.claim_waiting(DRUID, "accessionWF", 1, ["stage"]) == []
    assert await repo.claim_waiting(DRUID, "accessionWF", 1, []) == []


@pytest.mark.asyncio
async def test_concurrent_claims_transition_each_row_once(repo):
    await repo.create_workflow(_accession_steps())
    wanted = ["stage", "technical-metadata", "shelve"]

    results = await asyncio.gather(
        *(repo.claim_waiting(DRUID, "accessionWF", 1, wanted) for _ in range(10))
    )
    claimed = [s.process for batch in results for s in batch]
    assert sorted(claimed) == sorted(wanted)


@pytest.mark.asyncio
async def test_skip_all_only_touches_active_version(repo):
    await repo.create_workflow(_accession_steps(version=1))
    await repo.create_workflow(_accession_steps(version=2))

    skipped = await repo.skip_all(DRUID, "accessionWF", note="superseded")
    assert {s.version for s in skipped} == {2}
    assert all(s.status == SKIPPED and s.note == "superseded" for s in skipped)
    old = await repo.list_steps(DRUID, workflow="accessionWF", version=1)
    assert not any(s.status == SKIPPED for s in old)


@pytest.mark.asyncio
async def test_find_stale_returns_oldest_first(repo):
    now = utcnow()
    steps = []
    for i, object_id in enumerate(["druid:aa111aa1111", "druid:bb222bb2222", "druid:cc333cc3333"]):
        stamp = now - timedelta(hours=30 + i)
        steps.append(
            WorkflowStep(
                object_id=object_id,
                workflow="accessionWF",
                version=1,
                process="stage",
                status=QUEUED,
                created_at=stamp,
                updated_at=stamp,
            )
        )
    for step in steps:
        await repo.create_workflow([step])

    stale = await repo.find_stale(QUEUED, now - timedelta(hours=24))
    assert [s.object_id for s in stale] == [
        "druid:cc333cc3333",
        "druid:bb222bb2222",
        "druid:aa111aa1111",
    ]
    assert len(await repo.find_stale(QUEUED, now - timedelta(hours=24), limit=2)) == 2
    assert await repo.find_stale(QUEUED, now - timedelta(hours=40)) == []
    assert await repo.find_stale(STARTED, now) == []


@pytest.mark.asyncio
async def test_sqlite_data_survives_reopen(tmp_path):
    path = tmp_path / "steps.db"
    repo = SQLiteStepRepository(path)
    await repo.create_workflow(_accession_steps())
    await repo.update_status(DRUID, "accessionWF", "stage", COMPLETED)

    reopened = SQLiteStepRepository(path)
    step = await reopened.get_step(DRUID, "accessionWF", "stage")
    assert step.status == COMPLETED
    assert step.completed_at is not None
