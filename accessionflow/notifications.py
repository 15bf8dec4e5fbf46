"""Delivery of resolver events to the indexing service."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol

import httpx

from .config import ServiceEndpoint
from .contracts import ReindexRequested, StepEvent, StepUpdated, WorkflowStep
from .errors import AccessionFlowError

logger = logging.getLogger(__name__)

AccessionedHook = Callable[[WorkflowStep], Awaitable[None]]


class IndexingService(Protocol):
    async def reindex_later(self, object_id: str) -> None:
        """Queue a refresh of the object's index entry."""

    async def step_updated(self, step: WorkflowStep) -> None:
        """Announce that ``step`` changed."""


class HttpIndexingService:
    """Posts reindex requests and step notifications to the indexing service."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    @classmethod
    def from_endpoint(cls, endpoint: ServiceEndpoint) -> "HttpIndexingService":
        if not endpoint.base_url:
            raise ValueError("indexing.base_url is not configured")
        return cls(endpoint.base_url, token=endpoint.token, timeout=endpoint.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> None:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AccessionFlowError(f"Indexing request {path} failed: {e}") from e

    async def reindex_later(self, object_id: str) -> None:
        await self._post(f"/objects/{object_id}/reindex_later", {})

    async def step_updated(self, step: WorkflowStep) -> None:
        await self._post("/workflow_step_updated", step.model_dump(mode="json"))


class InMemoryIndexingService:
    """Records calls; used by tests and local runs."""

    def __init__(self) -> None:
        self.reindexed: List[str] = []
        self.step_notifications: List[WorkflowStep] = []

    async def reindex_later(self, object_id: str) -> None:
        self.reindexed.append(object_id)

    async def step_updated(self, step: WorkflowStep) -> None:
        self.step_notifications.append(step)


class Notifier:
    """Consumes the events a resolver pass emits.

    ``StepUpdated`` is delivered after ``delay`` seconds. The delay works
    around index commits from the final accessioning step landing out of
    order downstream; scheduling does not depend on it.
    """

    def __init__(
        self,
        indexing: IndexingService,
        delay: float = 0.0,
        on_accessioned: Optional[AccessionedHook] = None,
    ) -> None:
        self.indexing = indexing
        self.delay = delay
        self.on_accessioned = on_accessioned

    async def handle(self, events: Iterable[StepEvent]) -> None:
        for event in events:
            if isinstance(event, ReindexRequested):
                await self.indexing.reindex_later(event.object_id)
            elif isinstance(event, StepUpdated):
                if self.on_accessioned is not None:
                    await self.on_accessioned(event.step)
                if self.delay > 0:
                    await asyncio.sleep(self.delay)
                await self.indexing.step_updated(event.step)
                logger.info(
                    f"Published step update {event.step.workflow}:{event.step.process} "
                    f"for {event.step.object_id}"
                )
            else:
                raise TypeError(f"Unknown event {event!r}")

