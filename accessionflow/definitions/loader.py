"""Load workflow definitions from YAML and turn them into step graphs."""

from __future__ import annotations

import logging
from graphlib import CycleError, TopologicalSorter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from ..constants import DEFAULT_LANE
from ..contracts import ProcessSpec, WorkflowDefinition, WorkflowStep, utcnow
from ..errors import DefinitionError, WorkflowNotFoundError

logger = logging.getLogger(__name__)

BUILTIN_WORKFLOWS_DIR = Path(__file__).resolve().parent.parent / "workflows"


def parse_definition(data: Dict[str, Any], name: Optional[str] = None) -> WorkflowDefinition:
    """Build a validated :class:`WorkflowDefinition` from a parsed document.

    Process entries accept ``prerequisites`` (list of names), ``skip-queue``,
    ``lifecycle``, ``label`` and ``status: completed`` for processes that are
    satisfied as soon as the workflow is created.
    """
    if not isinstance(data, dict):
        raise DefinitionError(f"Workflow definition {name} must be a mapping")
    workflow_name = data.get("name") or name
    if not workflow_name:
        raise DefinitionError("Workflow definition has no name")

    processes: List[ProcessSpec] = []
    for entry in data.get("processes") or []:
        try:
            processes.append(
                ProcessSpec(
                    name=entry["name"],
                    label=entry.get("label", ""),
                    prerequisites=frozenset(entry.get("prerequisites") or []),
                    skip_queue=bool(entry.get("skip-queue", entry.get("skip_queue", False))),
                    lifecycle=entry.get("lifecycle"),
                    initial_status=entry.get("status", "waiting"),
                )
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise DefinitionError(f"Invalid process in {workflow_name}: {e}") from e

    definition = WorkflowDefinition(name=workflow_name, processes=tuple(processes))
    validate_definition(definition)
    return definition


def validate_definition(definition: WorkflowDefinition) -> None:
    """Fail fast on duplicate names, dangling prerequisites or cycles."""
    names = definition.process_names
    if not names:
        raise DefinitionError(f"Workflow {definition.name} has no processes")
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise DefinitionError(
            f"Workflow {definition.name} defines {sorted(duplicates)} more than once"
        )

    known = set(names)
    for process in definition.processes:
        missing = process.prerequisites - known
        if missing:
            raise DefinitionError(
                f"Process {process.name} in {definition.name} requires unknown "
                f"processes {sorted(missing)}"
            )

    graph = {p.name: set(p.prerequisites) for p in definition.processes}
    try:
        tuple(TopologicalSorter(graph).static_order())
    except CycleError as e:
        raise DefinitionError(
            f"Workflow {definition.name} has a prerequisite cycle: {e.args[1]}"
        ) from e


class DefinitionCache:
    """Loads workflow definitions once per name and keeps them for the process lifetime.

    Definitions are looked up in each search directory in order as
    ``<name>.yaml`` (or ``.yml``); the built-in directory is always searched
    last.
    """

    def __init__(self, search_paths: Optional[Iterable[str | Path]] = None) -> None:
        paths = [Path(p) for p in (search_paths or [])]
        paths.append(BUILTIN_WORKFLOWS_DIR)
        self._search_paths = paths
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def _find(self, workflow_name: str) -> Optional[Path]:
        for directory in self._search_paths:
            for suffix in (".yaml", ".yml"):
                candidate = directory / f"{workflow_name}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    def exists(self, workflow_name: str) -> bool:
        return workflow_name in self._definitions or self._find(workflow_name) is not None

    def load(self, workflow_name: str) -> WorkflowDefinition:
        """Return the definition for ``workflow_name``.

        Raises:
            WorkflowNotFoundError: If no definition file exists for the name.
            DefinitionError: If the definition is malformed.
        """
        cached = self._definitions.get(workflow_name)
        if cached is not None:
            return cached

        path = self._find(workflow_name)
        if path is None:
            raise WorkflowNotFoundError(workflow_name)
        with open(path) as f:
            data = yaml.safe_load(f)
        definition = parse_definition(data, name=workflow_name)
        if definition.name != workflow_name:
            raise DefinitionError(
                f"{path} defines workflow {definition.name}, expected {workflow_name}"
            )
        logger.debug(f"Loaded workflow definition {workflow_name} from {path}")
        # Concurrent first loads produce equal values; keep whichever landed first.
        return self._definitions.setdefault(workflow_name, definition)

    def available(self) -> List[str]:
        names = set(self._definitions)
        for directory in self._search_paths:
            if directory.is_dir():
                names.update(p.stem for p in directory.glob("*.y*ml"))
        return sorted(names)


def initial_steps(
    definition: WorkflowDefinition,
    object_id: str,
    version: int,
    lane: Optional[str] = None,
) -> List[WorkflowStep]:
    """Create one new step per process of ``definition``."""
    now = utcnow()
    steps = []
    for process in definition.processes:
        completed = process.initial_status == "completed"
        steps.append(
            WorkflowStep(
                object_id=object_id,
                workflow=definition.name,
                version=version,
                process=process.name,
                status=process.initial_status,
                lane=lane or DEFAULT_LANE,
                lifecycle=process.lifecycle,
                active_version=True,
                created_at=now,
                updated_at=now,
                completed_at=now if completed else None,
            )
        )
    return steps
