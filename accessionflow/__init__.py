"""accessionflow: workflow step scheduling and version lifecycle for accessioning."""

from .app import AccessionFlow, build_app
from .contracts import QueueJob, Resolution, WorkflowDefinition, WorkflowStep
from .definitions import DefinitionCache
from .dispatch import StepDispatcher
from .persistence import get_repository
from .resolver import NextStepResolver, ready_processes
from .service import WorkflowProcessService
from .transports import get_transport
from .versions import VersionLifecycleController

__version__ = "0.1.0"
__all__ = [
    "AccessionFlow",
    "DefinitionCache",
    "NextStepResolver",
    "QueueJob",
    "Resolution",
    "StepDispatcher",
    "VersionLifecycleController",
    "WorkflowDefinition",
    "WorkflowProcessService",
    "WorkflowStep",
    "build_app",
    "get_repository",
    "get_transport",
    "ready_processes",
]
