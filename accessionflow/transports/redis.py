"""Redis transport writing Sidekiq-compatible jobs."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis

from ..contracts import QueueJob, utcnow
from .base import BaseTransport

logger = logging.getLogger(__name__)


def to_sidekiq(job: QueueJob) -> str:
    """Serialize ``job`` as a Sidekiq job hash."""
    now = utcnow().timestamp()
    return json.dumps(
        {
            "class": job.job_class,
            "queue": job.queue,
            "args": job.args,
            "jid": job.jid,
            "retry": job.retry,
            "created_at": job.created_at.timestamp(),
            "enqueued_at": now,
        }
    )


def from_sidekiq(payload: str) -> QueueJob:
    data = json.loads(payload)
    return QueueJob(
        jid=data["jid"],
        queue=data["queue"],
        job_class=data["class"],
        args=data.get("args", []),
        retry=bool(data.get("retry", False)),
        created_at=datetime.fromtimestamp(data.get("created_at", 0), tz=timezone.utc),
    )


class RedisTransport(BaseTransport[str]):
    """Redis-based transport for the robot execution fabric.

    Jobs are pushed the way Sidekiq clients push them: the JSON job hash is
    ``LPUSH``-ed to ``queue:<name>`` and the queue name added to the
    ``queues`` set, in one transaction.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, queue: str, job: QueueJob) -> str:
        """Push ``job`` onto the Sidekiq list for ``queue``."""
        if not self._redis:
            await self.connect()

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.sadd("queues", queue)
            pipe.lpush(f"queue:{queue}", to_sidekiq(job))
            await pipe.execute()
        return job.jid

    async def subscribe(
        self, queue: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, QueueJob]]:
        """Pop jobs from ``queue`` (oldest first)."""
        if not self._redis:
            await self.connect()

        start_time = asyncio.get_event_loop().time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = asyncio.get_event_loop().time() - start_time
                if elapsed >= lifespan:
                    break

            result = await self._redis.brpop(f"queue:{queue}", timeout=1)
            if result:
                _, payload = result
                try:
                    job = from_sidekiq(payload)
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(f"Discarding unparseable job on {queue}: {e}")
                    continue
                yield payload, job
                continue

            await asyncio.sleep(0.01)
