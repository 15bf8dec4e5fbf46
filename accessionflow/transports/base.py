"""Base transport interface for the execution fabric."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import QueueJob

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract enqueue sink for step jobs."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, queue: str, job: QueueJob) -> str:
        """Push ``job`` onto ``queue`` and return the job id.

        Raises:
            Exception: Any broker failure; callers translate it.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, queue: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, QueueJob]]:
        """Yield raw transport message and QueueJob pairs.

        Args:
            queue: The queue to read from
            lifespan: Maximum time in seconds to keep reading. If None, runs indefinitely.
        """
        raise NotImplementedError
