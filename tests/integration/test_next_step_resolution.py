import asyncio

import pytest

from accessionflow.constants import COMPLETED, QUEUED, SKIPPED, STARTED, WAITING
from accessionflow.contracts import QueueJob
from accessionflow.definitions import DefinitionCache
from accessionflow.dispatch import StepDispatcher
from accessionflow.errors import ConflictError, DispatchError
from accessionflow.notifications import InMemoryIndexingService, Notifier
from accessionflow.persistence import InMemoryStepRepository, SQLiteStepRepository
from accessionflow.service import WorkflowProcessService
from accessionflow.transports import BaseTransport, InMemoryTransport

DRUID = "druid:bc123df4567"

DIAMOND = """
name: diamondWF
processes:
  - name: A
  - name: B
    prerequisites: [A]
  - name: C
    prerequisites: [A]
  - name: D
    prerequisites: [B, C]
"""


class BrokenTransport(BaseTransport):
    def __init__(self, broken_queues):
        self.broken_queues = set(broken_queues)
        self.inner = InMemoryTransport()

    async def publish(self, queue: str, job: QueueJob) -> str:
        if queue in self.broken_queues:
            raise ConnectionError("connection refused")
        return await self.inner.publish(queue, job)

    async def subscribe(self, queue, lifespan=None):
        async for item in self.inner.subscribe(queue, lifespan):
            yield item


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryStepRepository()
    return SQLiteStepRepository(tmp_path / "steps.db")


@pytest.fixture
def definitions(tmp_path):
    workflows = tmp_path / "workflows"
    workflows.mkdir()
    (workflows / "diamondWF.yaml").write_text(DIAMOND)
    return DefinitionCache([workflows])


def _service(repo, definitions, transport=None, indexing=None):
    transport = transport or InMemoryTransport()
    notifier = Notifier(indexing or InMemoryIndexingService(), delay=0)
    return WorkflowProcessService(repo, definitions, StepDispatcher(transport), notifier)


def _queued_processes(transport, queue):
    return [job.job_class.rsplit("::", 1)[-1] for job in transport.pending(queue)]


async def _statuses(service, workflow, version=1):
    steps = await service.workflow_steps(DRUID, workflow=workflow, version=version)
    return {s.process: s.status for s in steps}


@pytest.mark.asyncio
async def test_diamond_scenario(repo, definitions):
    transport = InMemoryTransport()
    service = _service(repo, definitions, transport)

    await service.create_workflow(DRUID, "diamondWF", 1)
    assert await _statuses(service, "diamondWF") == {
        "A": QUEUED,
        "B": WAITING,
        "C": WAITING,
        "D": WAITING,
    }

    await service.update_status(DRUID, "diamondWF", "A", COMPLETED)
    assert _queued_processes(transport, "diamondWF_default") == ["A", "B", "C"]

    await service.update_status(DRUID, "diamondWF", "B", COMPLETED)
    assert (await _statuses(service, "diamondWF"))["D"] == WAITING

    await service.update_status(DRUID, "diamondWF", "C", SKIPPED)
    assert (await _statuses(service, "diamondWF"))["D"] == QUEUED
    assert _queued_processes(transport, "diamondWF_default") == ["A", "B", "C", "D"]


@pytest.mark.asyncio
async def test_recreating_workflow_does_not_requeue(repo, definitions):
    transport = InMemoryTransport()
    service = _service(repo, definitions, transport)

    await service.create_workflow(DRUID, "diamondWF", 1)
    await service.create_workflow(DRUID, "diamondWF", 1)

    assert len(transport.pending("diamondWF_default")) == 1


@pytest.mark.asyncio
async def test_concurrent_completions_queue_join_once(repo, definitions):
    transport = InMemoryTransport()
    service = _service(repo, definitions, transport)
    await service.create_workflow(DRUID, "diamondWF", 1)
    await service.update_status(DRUID, "diamondWF", "A", COMPLETED)

    await asyncio.gather(
        service.update_status(DRUID, "diamondWF", "B", COMPLETED),
        service.update_status(DRUID, "diamondWF", "C", COMPLETED),
    )

    assert _queued_processes(transport, "diamondWF_default").count("D") == 1


@pytest.mark.asyncio
async def test_concurrent_resolver_passes_claim_at_most_once(repo, definitions):
    transport = InMemoryTransport()
    service = _service(repo, definitions, transport)
    await service.create_workflow(DRUID, "diamondWF", 1)
    step = await repo.update_status(DRUID, "diamondWF", "A", COMPLETED)

    resolutions = await asyncio.gather(*(service.resolver.resolve(step) for _ in range(8)))

    claimed = [s.process for r in resolutions for s in r.claimed]
    assert sorted(claimed) == ["B", "C"]
    assert _queued_processes(transport, "diamondWF_default") == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_conflict_leaves_state_and_queues_untouched(repo, definitions):
    transport = InMemoryTransport()
    service = _service(repo, definitions, transport)
    await service.create_workflow(DRUID, "diamondWF", 1)

    with pytest.raises(ConflictError):
        await service.update_status(DRUID, "diamondWF", "A", COMPLETED, expected_status=STARTED)

    assert (await _statuses(service, "diamondWF"))["A"] == QUEUED
    assert len(transport.pending("diamondWF_default")) == 1


@pytest.mark.asyncio
async def test_unknown_status_rejected(repo, definitions):
    service = _service(repo, definitions)
    await service.create_workflow(DRUID, "diamondWF", 1)
    with pytest.raises(ValueError):
        await service.update_status(DRUID, "diamondWF", "A", "finished")


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_claim_and_can_be_reenqueued(repo):
    transport = BrokenTransport({"accessionWF_default_dsa"})
    indexing = InMemoryIndexingService()
    service = _service(repo, DefinitionCache(), transport, indexing)
    await service.create_workflow(DRUID, "accessionWF", 1)
    for process in ("stage", "technical-metadata"):
        await service.update_status(DRUID, "accessionWF", process, COMPLETED)

    indexing.reindexed.clear()
    with pytest.raises(DispatchError) as exc:
        await service.update_status(DRUID, "accessionWF", "shelve", COMPLETED)
    assert exc.value.step.process == "publish"
    assert indexing.reindexed == [DRUID]

    publish = await service.get_step(DRUID, "accessionWF", "publish")
    assert publish.status == QUEUED

    # A second pass must not claim it again; the operator re-enqueues instead.
    resolution = await service.resolver.resolve(
        await service.get_step(DRUID, "accessionWF", "shelve")
    )
    assert resolution.claimed == []

    transport.broken_queues.clear()
    jid = await service.dispatcher.dispatch(publish)
    assert [job.jid for job in transport.inner.pending("accessionWF_default_dsa")] == [jid]


@pytest.mark.asyncio
async def test_failed_entry_dispatch_still_reindexes(repo):
    indexing = InMemoryIndexingService()
    service = _service(
        repo, DefinitionCache(), BrokenTransport({"accessionWF_default"}), indexing
    )

    with pytest.raises(DispatchError):
        await service.create_workflow(DRUID, "accessionWF", 1)

    assert indexing.reindexed == [DRUID]
    assert (await _statuses(service, "accessionWF"))["stage"] == QUEUED


@pytest.mark.asyncio
async def test_accession_workflow_end_to_end(repo):
    transport = InMemoryTransport()
    indexing = InMemoryIndexingService()
    service = _service(repo, DefinitionCache(), transport, indexing)
    definition = service.definitions.load("accessionWF")

    await service.create_workflow(DRUID, "accessionWF", 1)
    assert (await _statuses(service, "accessionWF"))["stage"] == QUEUED

    for process in definition.process_names[1:]:
        step = await service.get_step(DRUID, "accessionWF", process)
        if process == "sdr-ingest-received":
            # Completed by preservation, never queued.
            assert step.status == WAITING
        else:
            assert step.status == QUEUED, process
            await service.update_status(DRUID, "accessionWF", process, STARTED)
        await service.update_status(DRUID, "accessionWF", process, COMPLETED)

    statuses = await _statuses(service, "accessionWF")
    assert set(statuses.values()) == {COMPLETED}

    robots = {job.job_class for job in transport.pending("accessionWF_default")}
    assert "Robots::DorRepo::Accession::EndAccession" in robots
    assert "Robots::DorRepo::Accession::SdrIngestReceived" not in robots
    dsa = [job.job_class for job in transport.pending("accessionWF_default_dsa")]
    assert dsa == [
        "Robots::DorRepo::Accession::Publish",
        "Robots::DorRepo::Accession::UpdateDoi",
        "Robots::DorRepo::Accession::UpdateOrcidWork",
    ]

    assert [s.process for s in indexing.step_notifications] == ["end-accession"]
    assert DRUID in indexing.reindexed
