"""Core data contracts for accessionflow."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_LANE, DONE_STATUSES, WAITING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessSpec(BaseModel):
    """Static definition of one process in a workflow."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    prerequisites: FrozenSet[str] = Field(default_factory=frozenset)
    skip_queue: bool = False
    lifecycle: Optional[str] = None
    initial_status: Literal["waiting", "completed"] = WAITING


class WorkflowDefinition(BaseModel):
    """A named, ordered and acyclic collection of processes."""

    model_config = ConfigDict(frozen=True)

    name: str
    processes: Tuple[ProcessSpec, ...] = ()

    @property
    def process_names(self) -> List[str]:
        return [p.name for p in self.processes]

    def get(self, name: str) -> Optional[ProcessSpec]:
        return next((p for p in self.processes if p.name == name), None)

    @property
    def terminal_process(self) -> Optional[ProcessSpec]:
        """The last process in definition order."""
        return self.processes[-1] if self.processes else None


class WorkflowStep(BaseModel):
    """Scheduling state of one process for one object version."""

    id: Optional[int] = None
    object_id: str
    workflow: str
    version: int
    process: str
    status: str = WAITING
    attempts: int = 0
    lane: str = DEFAULT_LANE
    lifecycle: Optional[str] = None
    error_message: Optional[str] = None
    error_text: Optional[str] = None
    note: Optional[str] = None
    elapsed: float = 0.0
    active_version: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str, int, str]:
        return (self.object_id, self.workflow, self.version, self.process)

    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


class QueueJob(BaseModel):
    """Envelope pushed onto an execution fabric queue."""

    jid: str = Field(default_factory=lambda: uuid.uuid4().hex[:24])
    queue: str
    job_class: str
    args: List[Any] = Field(default_factory=list)
    retry: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "QueueJob":
        return cls.model_validate_json(data)


class StepUpdated(BaseModel):
    """Emitted when the terminal accessioning step completes."""

    kind: Literal["step_updated"] = "step_updated"
    step: WorkflowStep


class ReindexRequested(BaseModel):
    """Deferred, idempotent request to refresh the object's index entry."""

    kind: Literal["reindex"] = "reindex"
    object_id: str


StepEvent = Union[StepUpdated, ReindexRequested]


class Resolution(BaseModel):
    """Outcome of one next-step evaluation pass."""

    step: WorkflowStep
    ready: List[str] = Field(default_factory=list)
    claimed: List[WorkflowStep] = Field(default_factory=list)
    job_ids: Dict[str, str] = Field(default_factory=dict)
    events: List[StepEvent] = Field(default_factory=list)
