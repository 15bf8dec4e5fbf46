"""Row mapping and status transitions shared by the step backends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from ..constants import DONE_STATUSES, ERROR, STARTED
from ..contracts import WorkflowStep, utcnow

STEP_COLUMNS = (
    "id",
    "object_id",
    "workflow",
    "version",
    "process",
    "status",
    "attempts",
    "lane",
    "lifecycle",
    "error_message",
    "error_text",
    "note",
    "elapsed",
    "active_version",
    "created_at",
    "updated_at",
    "completed_at",
)


def step_from_row(row: Mapping[str, Any]) -> WorkflowStep:
    return WorkflowStep.model_validate({col: row[col] for col in STEP_COLUMNS})


def apply_status(
    step: WorkflowStep,
    status: str,
    elapsed: float = 0,
    lifecycle: Optional[str] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WorkflowStep:
    """Return a copy of ``step`` moved to ``status``.

    ``attempts`` counts entries into ``started``; ``completed_at`` is stamped
    the first time the step is done and never overwritten.
    """
    now = now or utcnow()
    changes: dict[str, Any] = {
        "status": status,
        "elapsed": elapsed or 0.0,
        "note": note,
        "updated_at": now,
        "error_message": None,
        "error_text": None,
    }
    if lifecycle is not None:
        changes["lifecycle"] = lifecycle
    if status == STARTED:
        changes["attempts"] = step.attempts + 1
    if status in DONE_STATUSES and step.completed_at is None:
        changes["completed_at"] = now
    return step.model_copy(update=changes)


def apply_error(
    step: WorkflowStep,
    message: str,
    text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WorkflowStep:
    return step.model_copy(
        update={
            "status": ERROR,
            "error_message": message,
            "error_text": text,
            "updated_at": now or utcnow(),
        }
    )
