"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AccessionFlowConfig, RedisConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None,
    config: Optional[AccessionFlowConfig] = None,
    app_fabric: bool = False,
) -> BaseTransport:
    """Factory function to get the configured transport.

    ``app_fabric`` selects the connection used for steps the application
    executes itself (``transport.app_redis``, defaulting to ``transport.redis``).
    """

    config = config or load_config()
    backend = (backend or os.getenv("ACCESSIONFLOW_TRANSPORT") or config.transport.backend).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    elif backend == "redis":
        from .redis import RedisTransport

        redis_conf: RedisConfig = config.transport.redis
        if app_fabric and config.transport.app_redis is not None:
            redis_conf = config.transport.app_redis
        return RedisTransport(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
