"""Public API for creating workflows and reporting step progress."""

from __future__ import annotations

import logging
from typing import List, Optional

from .constants import STEP_STATUSES
from .contracts import ReindexRequested, Resolution, StepEvent, WorkflowStep
from .definitions import DefinitionCache, initial_steps
from .dispatch import StepDispatcher
from .errors import DispatchError
from .notifications import Notifier
from .persistence import StepRepository, get_repository
from .resolver import NextStepResolver
from .transports import get_transport

logger = logging.getLogger(__name__)


class WorkflowProcessService:
    """Entry point used by workers and operators to drive workflow steps.

    Every completed or skipped step triggers a next-step evaluation; the
    resulting events go to ``notifier`` once the evaluation returns.
    """

    def __init__(
        self,
        repository: StepRepository | None = None,
        definitions: DefinitionCache | None = None,
        dispatcher: StepDispatcher | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.definitions = definitions or DefinitionCache()
        self.dispatcher = dispatcher or StepDispatcher(get_transport())
        self.resolver = NextStepResolver(self.repository, self.definitions, self.dispatcher)
        self.notifier = notifier

    async def _notify(self, events: List[StepEvent]) -> None:
        if self.notifier is not None:
            await self.notifier.handle(events)

    async def _resolve(self, step: WorkflowStep) -> Resolution:
        try:
            resolution = await self.resolver.resolve(step)
        except DispatchError as e:
            await self._notify(e.events)
            raise
        await self._notify(resolution.events)
        return resolution

    async def _reindex(self, object_id: str) -> None:
        await self._notify([ReindexRequested(object_id=object_id)])

    async def create_workflow(
        self,
        object_id: str,
        workflow: str,
        version: int,
        lane: Optional[str] = None,
    ) -> List[WorkflowStep]:
        """Instantiate ``workflow`` for ``version`` and queue its entry steps.

        Creating a workflow that already exists for the version returns the
        stored steps; re-evaluating it queues nothing new.

        Raises:
            WorkflowNotFoundError: If there is no definition named ``workflow``.
        """
        definition = self.definitions.load(workflow)
        steps = await self.repository.create_workflow(
            initial_steps(definition, object_id, version, lane=lane)
        )
        logger.info(f"Created {workflow} v{version} for {object_id} ({len(steps)} steps)")
        await self._resolve(steps[0])
        return steps

    async def update_status(
        self,
        object_id: str,
        workflow: str,
        process: str,
        status: str,
        elapsed: float = 0,
        lifecycle: Optional[str] = None,
        note: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> WorkflowStep:
        """Record a status reported for a step.

        Raises:
            StepNotFoundError: If the step was never instantiated.
            ConflictError: If ``expected_status`` differs from the stored status.
            DispatchError: If a step unblocked by this one could not be enqueued.
                Its reindex and step notifications are delivered first.
        """
        if status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status {status!r}")
        step = await self.repository.update_status(
            object_id,
            workflow,
            process,
            status,
            elapsed=elapsed,
            lifecycle=lifecycle,
            note=note,
            expected_status=expected_status,
        )
        logger.info(f"{workflow}:{process} for {object_id} v{step.version} is {status}")
        if step.is_done():
            await self._resolve(step)
        else:
            await self._reindex(object_id)
        return step

    async def update_error(
        self,
        object_id: str,
        workflow: str,
        process: str,
        message: str,
        text: Optional[str] = None,
    ) -> WorkflowStep:
        step = await self.repository.update_error(object_id, workflow, process, message, text)
        logger.warning(f"{workflow}:{process} for {object_id} failed: {message}")
        await self._reindex(object_id)
        return step

    async def skip_all(
        self, object_id: str, workflow: str, note: Optional[str] = None
    ) -> List[WorkflowStep]:
        """Skip every step of the active version of ``workflow``."""
        steps = await self.repository.skip_all(object_id, workflow, note=note)
        await self._reindex(object_id)
        return steps

    async def get_step(
        self, object_id: str, workflow: str, process: str, version: Optional[int] = None
    ) -> WorkflowStep:
        return await self.repository.get_step(object_id, workflow, process, version=version)

    async def workflow_steps(
        self,
        object_id: str,
        workflow: Optional[str] = None,
        version: Optional[int] = None,
    ) -> List[WorkflowStep]:
        return await self.repository.list_steps(object_id, workflow=workflow, version=version)
