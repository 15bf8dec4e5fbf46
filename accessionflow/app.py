"""Assembles the services from configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import AccessionFlowConfig, load_config
from .db import VersionLedger
from .definitions import DefinitionCache
from .dispatch import StepDispatcher
from .monitor import StuckStepMonitor
from .notifications import HttpIndexingService, IndexingService, InMemoryIndexingService, Notifier
from .persistence import StepRepository, get_repository
from .preservation import HttpPreservationClient, PreservationClient
from .routing import QueueRouter
from .service import WorkflowProcessService
from .transports import get_transport
from .versions import VersionLifecycleController


@dataclass
class AccessionFlow:
    config: AccessionFlowConfig
    repository: StepRepository
    service: WorkflowProcessService
    versions: VersionLifecycleController
    ledger: VersionLedger
    monitor: StuckStepMonitor
    notifier: Notifier

    async def start(self) -> None:
        """Create the version ledger tables if needed."""
        await self.ledger.init_db()


def build_app(
    config: Optional[AccessionFlowConfig] = None,
    repository: Optional[StepRepository] = None,
    indexing: Optional[IndexingService] = None,
    preservation: Optional[PreservationClient] = None,
) -> AccessionFlow:
    """Wire repository, transports, resolver, notifier and version controller."""
    config = config or load_config()
    repository = repository or get_repository(config=config)

    search_paths = [config.workflows.path] if config.workflows.path else []
    definitions = DefinitionCache(search_paths)

    transport = get_transport(config=config)
    app_transport = (
        get_transport(config=config, app_fabric=True) if config.transport.app_redis else None
    )
    dispatcher = StepDispatcher(
        transport,
        router=QueueRouter.from_config(config),
        app_transport=app_transport,
        retries=config.routing.dispatch_retries,
    )
    service = WorkflowProcessService(repository, definitions, dispatcher)

    if preservation is None and config.preservation.base_url:
        preservation = HttpPreservationClient.from_endpoint(config.preservation)
    ledger = VersionLedger(config.ledger_url or "sqlite+aiosqlite:///:memory:")
    versions = VersionLifecycleController(
        service,
        ledger,
        preservation=preservation,
        sync_with_preservation=config.versioning.sync_with_preservation,
    )

    if indexing is None:
        indexing = (
            HttpIndexingService.from_endpoint(config.indexing)
            if config.indexing.base_url
            else InMemoryIndexingService()
        )
    notifier = Notifier(
        indexing,
        delay=config.notifications.step_updated_delay,
        on_accessioned=versions.on_accessioned,
    )
    service.notifier = notifier

    return AccessionFlow(
        config=config,
        repository=repository,
        service=service,
        versions=versions,
        ledger=ledger,
        monitor=StuckStepMonitor(repository, config.monitor),
        notifier=notifier,
    )
