"""Queue routing for dispatched steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, FrozenSet, Mapping, Optional, Tuple

from .constants import SDR_WORKFLOWS
from .contracts import WorkflowStep

if TYPE_CHECKING:
    from .config import AccessionFlowConfig

RouteKey = Tuple[str, str]

# Heavy or serialisation-sensitive processes with their own queue.
DEDICATED_QUEUES: Mapping[RouteKey, str] = {
    ("assemblyWF", "jp2-create"): "assemblyWF_jp2",
}

# Processes executed by this application's own workers rather than the robots.
APP_FABRIC_PROCESSES: FrozenSet[RouteKey] = frozenset(
    {
        ("accessionWF", "publish"),
        ("accessionWF", "update-doi"),
        ("accessionWF", "update-orcid-work"),
        ("releaseWF", "release-members"),
        ("releaseWF", "release-publish"),
    }
)

APP_FABRIC_SUFFIX = "dsa"


@dataclass(frozen=True)
class Route:
    queue: str
    job_class: str
    app_fabric: bool = False


def job_class_for(workflow: str, process: str) -> str:
    """Worker class name, e.g. ``Robots::DorRepo::Accession::TechnicalMetadata``."""
    repo = "SdrRepo" if workflow in SDR_WORKFLOWS else "DorRepo"
    base = workflow[:-2] if workflow.endswith("WF") else workflow
    module = base[:1].upper() + base[1:]
    klass = "".join(part[:1].upper() + part[1:] for part in process.split("-") if part)
    return f"Robots::{repo}::{module}::{klass}"


class QueueRouter:
    """Maps a step to its queue.

    Precedence: the in-app fabric table, then the dedicated queue table, then
    ``{workflow}_{lane}``.
    """

    def __init__(
        self,
        dedicated: Optional[Mapping[RouteKey, str]] = None,
        app_fabric: Optional[Mapping[RouteKey, Optional[str]]] = None,
    ) -> None:
        self._dedicated: Dict[RouteKey, str] = dict(DEDICATED_QUEUES)
        self._dedicated.update(dedicated or {})
        self._app_fabric: Dict[RouteKey, Optional[str]] = {k: None for k in APP_FABRIC_PROCESSES}
        self._app_fabric.update(app_fabric or {})

    @classmethod
    def from_config(cls, config: "AccessionFlowConfig") -> "QueueRouter":
        dedicated = {}
        for entry in config.routing.dedicated:
            if not entry.queue:
                raise ValueError(
                    f"Dedicated route for {entry.workflow}:{entry.process} needs a queue"
                )
            dedicated[(entry.workflow, entry.process)] = entry.queue
        app_fabric = {(e.workflow, e.process): e.queue for e in config.routing.app_fabric}
        return cls(dedicated=dedicated, app_fabric=app_fabric)

    def route(self, step: WorkflowStep) -> Route:
        key = (step.workflow, step.process)
        job_class = job_class_for(step.workflow, step.process)
        if key in self._app_fabric:
            queue = self._app_fabric[key] or f"{step.workflow}_{step.lane}_{APP_FABRIC_SUFFIX}"
            return Route(queue=queue, job_class=job_class, app_fabric=True)
        if key in self._dedicated:
            return Route(queue=self._dedicated[key], job_class=job_class)
        return Route(queue=f"{step.workflow}_{step.lane}", job_class=job_class)
