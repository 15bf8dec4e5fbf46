from __future__ import annotations

import asyncio
import random


def compute_backoff(attempt: int, base: float = 0.5, cap: float = 10.0, jitter: float = 0.25) -> float:
    """Exponential backoff for ``attempt`` (0-based), capped, with jitter."""
    delay = min(cap, base * (2 ** attempt))
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, **kwargs: float) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, **kwargs)
    await asyncio.sleep(delay)
