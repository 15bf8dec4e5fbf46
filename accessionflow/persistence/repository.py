"""Repository abstraction for workflow step persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from ..contracts import WorkflowStep


class StepRepository(Protocol):
    """Protocol for workflow step persistence backends."""

    async def create_workflow(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        """Persist the steps of a newly instantiated workflow.

        All steps share one ``(object_id, workflow, version)``. When rows for
        that triple already exist they are returned unchanged. The new
        version's steps become the object's active version.
        """

    async def get_step(
        self,
        object_id: str,
        workflow: str,
        process: str,
        version: Optional[int] = None,
    ) -> WorkflowStep:
        """Return one step; the newest version when ``version`` is omitted.

        Raises:
            StepNotFoundError: If the workflow/process was never instantiated.
        """

    async def list_steps(
        self,
        object_id: str,
        workflow: Optional[str] = None,
        version: Optional[int] = None,
    ) -> list[WorkflowStep]:
        """Return steps for an object, oldest first."""

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
        """Set the status of the newest version's step.

        Raises:
            StepNotFoundError: If the step does not exist.
            ConflictError: If ``expected_status`` does not match the stored status.
        """

    async def update_error(
        self,
        object_id: str,
        workflow: str,
        process: str,
        message: str,
        text: Optional[str] = None,
    ) -> WorkflowStep:
        """Move the newest version's step to ``error``."""

    async def claim_waiting(
        self,
        object_id: str,
        workflow: str,
        version: int,
        processes: Iterable[str],
    ) -> list[WorkflowStep]:
        """Atomically move the named ``waiting`` steps to ``queued``.

        Returns only the rows this call transitioned.
        """

    async def skip_all(
        self, object_id: str, workflow: str, note: Optional[str] = None
    ) -> list[WorkflowStep]:
        """Mark every active-version step of ``workflow`` as skipped."""

    async def find_stale(
        self, status: str, older_than: datetime, limit: int = 500
    ) -> list[WorkflowStep]:
        """Return steps in ``status`` whose last update precedes ``older_than``."""
