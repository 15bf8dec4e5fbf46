"""Next-step resolution: decide what runs after a step finishes."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping

from .constants import ACCESSION_WF, COMPLETED, END_ACCESSION
from .contracts import (
    ReindexRequested,
    Resolution,
    StepEvent,
    StepUpdated,
    WorkflowDefinition,
    WorkflowStep,
)
from .definitions import DefinitionCache
from .dispatch import StepDispatcher
from .errors import DispatchError
from .persistence import StepRepository

logger = logging.getLogger(__name__)


def ready_processes(definition: WorkflowDefinition, done: Iterable[str]) -> List[str]:
    """Processes not yet done whose prerequisites are all done.

    Skip-queue processes are never ready; an external actor completes them.
    Result is in definition order.
    """
    done_set = set(done)
    return [
        p.name
        for p in definition.processes
        if p.name not in done_set and p.prerequisites <= done_set and not p.skip_queue
    ]


def is_end_of_accessioning(step: WorkflowStep) -> bool:
    return step.workflow == ACCESSION_WF and step.process == END_ACCESSION and step.status == COMPLETED


class NextStepResolver:
    """Claims and dispatches the steps a completed step has unblocked."""

    def __init__(
        self,
        repository: StepRepository,
        definitions: DefinitionCache,
        dispatcher: StepDispatcher,
    ) -> None:
        self.repository = repository
        self.definitions = definitions
        self.dispatcher = dispatcher

    async def resolve(self, step: WorkflowStep) -> Resolution:
        """Evaluate ``step``'s workflow version and enqueue newly ready steps.

        Rows are claimed (``waiting`` -> ``queued``) before anything is
        enqueued, so concurrent passes never dispatch the same step twice.

        Raises:
            DispatchError: After every claimed step has been attempted, if any
                of them could not be enqueued. Claimed steps stay ``queued``
                and the pass's events ride on the error.
        """
        definition = self.definitions.load(step.workflow)
        steps = await self.repository.list_steps(
            step.object_id, workflow=step.workflow, version=step.version
        )
        done = {s.process for s in steps if s.is_done()}
        ready = ready_processes(definition, done)

        claimed = await self.repository.claim_waiting(
            step.object_id, step.workflow, step.version, ready
        )
        order: Mapping[str, int] = {name: i for i, name in enumerate(definition.process_names)}
        claimed.sort(key=lambda s: order.get(s.process, len(order)))
        if claimed:
            logger.info(
                f"Claimed {[s.process for s in claimed]} in {step.workflow} "
                f"v{step.version} for {step.object_id}"
            )

        job_ids = {}
        failures: List[DispatchError] = []
        for claimed_step in claimed:
            try:
                job_ids[claimed_step.process] = await self.dispatcher.dispatch(claimed_step)
            except DispatchError as e:
                failures.append(e)

        events: List[StepEvent] = [ReindexRequested(object_id=step.object_id)]
        if is_end_of_accessioning(step):
            events.append(StepUpdated(step=step))

        if failures:
            failures[0].events = events
            raise failures[0]

        return Resolution(
            step=step, ready=ready, claimed=claimed, job_ids=job_ids, events=events
        )
