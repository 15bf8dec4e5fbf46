"""In-memory implementation of the step repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from ..constants import QUEUED, SKIPPED, WAITING
from ..contracts import WorkflowStep, utcnow
from ..errors import ConflictError, StepNotFoundError
from .models import apply_error, apply_status
from .repository import StepRepository

StepKey = Tuple[str, str, int, str]


class InMemoryStepRepository(StepRepository):
    """Store workflow steps in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Every mutation runs under one
    ``asyncio.Lock`` so claims are atomic within the event loop.
    """

    def __init__(self) -> None:
        self._steps: Dict[StepKey, WorkflowStep] = {}
        self._next_id = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    def _newest(self, object_id: str, workflow: str, process: str) -> WorkflowStep:
        candidates = [
            s
            for s in self._steps.values()
            if s.object_id == object_id and s.workflow == workflow and s.process == process
        ]
        if not candidates:
            raise StepNotFoundError(object_id, workflow, process)
        return max(candidates, key=lambda s: s.version)

    def _store(self, step: WorkflowStep) -> WorkflowStep:
        self._steps[step.key] = step
        return step.model_copy()

    # ------------------------------------------------------------------
    async def create_workflow(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        if not steps:
            return []
        first = steps[0]
        async with self._lock:
            existing = [
                s
                for s in self._steps.values()
                if (s.object_id, s.workflow, s.version)
                == (first.object_id, first.workflow, first.version)
            ]
            if existing:
                return [s.model_copy() for s in sorted(existing, key=lambda s: s.id or 0)]

            object_steps = [s for s in self._steps.values() if s.object_id == first.object_id]
            newest = max((s.version for s in object_steps), default=first.version)
            active = first.version >= newest
            if active:
                for s in object_steps:
                    if s.version < first.version and s.active_version:
                        self._steps[s.key] = s.model_copy(update={"active_version": False})

            created = []
            for step in steps:
                self._next_id += 1
                created.append(
                    self._store(
                        step.model_copy(update={"id": self._next_id, "active_version": active})
                    )
                )
            return created

    async def get_step(
        self,
        object_id: str,
        workflow: str,
        process: str,
        version: Optional[int] = None,
    ) -> WorkflowStep:
        if version is None:
            return self._newest(object_id, workflow, process).model_copy()
        step = self._steps.get((object_id, workflow, version, process))
        if step is None:
            raise StepNotFoundError(object_id, workflow, process)
        return step.model_copy()

    async def list_steps(
        self,
        object_id: str,
        workflow: Optional[str] = None,
        version: Optional[int] = None,
    ) -> list[WorkflowStep]:
        steps = [
            s
            for s in self._steps.values()
            if s.object_id == object_id
            and (workflow is None or s.workflow == workflow)
            and (version is None or s.version == version)
        ]
        return [s.model_copy() for s in sorted(steps, key=lambda s: s.id or 0)]

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
        async with self._lock:
            step = self._newest(object_id, workflow, process)
            if expected_status and step.status != expected_status:
                raise ConflictError(object_id, workflow, process, expected_status, step.status)
            return self._store(apply_status(step, status, elapsed, lifecycle, note))

    async def update_error(
        self,
        object_id: str,
        workflow: str,
        process: str,
        message: str,
        text: Optional[str] = None,
    ) -> WorkflowStep:
        async with self._lock:
            step = self._newest(object_id, workflow, process)
            return self._store(apply_error(step, message, text))

    async def claim_waiting(
        self,
        object_id: str,
        workflow: str,
        version: int,
        processes: Iterable[str],
    ) -> list[WorkflowStep]:
        wanted = set(processes)
        if not wanted:
            return []
        now = utcnow()
        claimed = []
        async with self._lock:
            for process in sorted(wanted):
                step = self._steps.get((object_id, workflow, version, process))
                if step is None or step.status != WAITING:
                    continue
                claimed.append(
                    self._store(step.model_copy(update={"status": QUEUED, "updated_at": now}))
                )
        return claimed

    async def skip_all(
        self, object_id: str, workflow: str, note: Optional[str] = None
    ) -> list[WorkflowStep]:
        async with self._lock:
            targets = [
                s
                for s in self._steps.values()
                if s.object_id == object_id and s.workflow == workflow and s.active_version
            ]
            return [self._store(apply_status(s, SKIPPED, note=note)) for s in targets]

    async def find_stale(
        self, status: str, older_than: datetime, limit: int = 500
    ) -> list[WorkflowStep]:
        stale = [
            s for s in self._steps.values() if s.status == status and s.updated_at < older_than
        ]
        stale.sort(key=lambda s: s.updated_at)
        return [s.model_copy() for s in stale[:limit]]
