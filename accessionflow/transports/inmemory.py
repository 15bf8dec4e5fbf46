"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import QueueJob
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, QueueJob]]):
    """Simple in-process queues for unit tests."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, QueueJob]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, queue: str, job: QueueJob) -> str:
        """Publish job to in-memory queue."""
        raw = (job.to_json(), job)
        async with self._lock:
            self._queues[queue].append(raw)
        return job.jid

    def pending(self, queue: str) -> List[QueueJob]:
        """Jobs currently waiting on ``queue``, oldest first."""
        return [job for _, job in self._queues.get(queue, ())]

    def queues(self) -> List[str]:
        return sorted(name for name, jobs in self._queues.items() if jobs)

    async def subscribe(
        self, queue: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, QueueJob], QueueJob]]:
        """Consume jobs from ``queue``.

        Args:
            queue: The queue to read from
            lifespan: Maximum time in seconds to keep reading. If None, runs indefinitely.
        """
        start_time = asyncio.get_event_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_event_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            async with self._lock:
                raw_message = self._queues[queue].popleft() if self._queues[queue] else None
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.1)
