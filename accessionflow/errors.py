"""Exception hierarchy for accessionflow.

Every error carries an HTTP-style ``status`` so that callers exposing these
operations over a network can map them without a lookup table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .contracts import StepEvent, WorkflowStep


class AccessionFlowError(Exception):
    """Base exception for all accessionflow errors."""

    status = 500

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__doc__)


class NotFoundError(AccessionFlowError):
    """Requested object not found."""

    status = 404


class StepNotFoundError(NotFoundError):
    """Workflow step has not been instantiated."""

    def __init__(self, object_id: str, workflow: str, process: str) -> None:
        self.object_id = object_id
        self.workflow = workflow
        self.process = process
        super().__init__(f"Process {process} not found in {workflow} for {object_id}")


class WorkflowNotFoundError(NotFoundError):
    """No workflow definition exists for the name."""

    def __init__(self, workflow: str) -> None:
        self.workflow = workflow
        super().__init__(f"Workflow {workflow} not found")


class ObjectNotFoundError(NotFoundError):
    """Object has no version history."""


class PreservationNotFoundError(NotFoundError):
    """Preservation is not answering queries about the object."""


class ConflictError(AccessionFlowError):
    """Step status did not match the expected current status."""

    status = 409

    def __init__(
        self, object_id: str, workflow: str, process: str, expected: str, actual: str
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Process {process} in workflow {workflow} for {object_id} has a conflict: "
            f"expected status {expected}, but found {actual}"
        )


class DefinitionError(AccessionFlowError):
    """Workflow definition is malformed."""


class VersioningError(AccessionFlowError):
    """Version lifecycle rule violated."""

    status = 422


class AlreadyOpenError(VersioningError):
    """Object already opened for versioning."""


class NotAccessionedError(VersioningError):
    """Object not yet accessioned."""


class PreconditionError(VersioningError):
    """Version lifecycle precondition not met."""


class VersionNotOpenError(PreconditionError):
    """Version is not opened for versioning."""


class AssemblingError(PreconditionError):
    """Object has an active assembly workflow."""


class AccessioningInProgressError(PreconditionError):
    """Object is currently being accessioned."""


class MissingVersionMetadataError(PreconditionError):
    """Version is missing a description or significance."""


class DispatchError(AccessionFlowError):
    """Enqueueing a claimed step failed.

    The step is already ``queued``; a retry must re-enqueue it rather than
    claim it again.
    """

    def __init__(self, step: "WorkflowStep", queue: str, reason: str) -> None:
        self.step = step
        self.queue = queue
        # Events of the resolver pass that failed; still owed to the notifier.
        self.events: List["StepEvent"] = []
        super().__init__(
            f"Enqueueing {step.workflow}:{step.process} for {step.object_id} "
            f"to {queue} failed: {reason}"
        )
