from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_QUEUED_THRESHOLD_HOURS,
    DEFAULT_STARTED_THRESHOLD_HOURS,
    DEFAULT_STEP_UPDATED_DELAY,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    # Fabric for steps executed by the application itself; falls back to ``redis``.
    app_redis: Optional[RedisConfig] = None


class RouteEntry(BaseModel):
    workflow: str
    process: str
    queue: Optional[str] = None


class RoutingConfig(BaseModel):
    """Extra routing table entries merged over the built-in tables."""

    dedicated: List[RouteEntry] = Field(default_factory=list)
    app_fabric: List[RouteEntry] = Field(default_factory=list)
    dispatch_retries: int = 0


class WorkflowsConfig(BaseModel):
    """Where workflow definitions are loaded from."""

    path: Optional[str] = None


class MonitorConfig(BaseModel):
    queued_threshold_hours: float = DEFAULT_QUEUED_THRESHOLD_HOURS
    started_threshold_hours: float = DEFAULT_STARTED_THRESHOLD_HOURS
    batch_size: int = 500
    interval_seconds: float = 3600.0


class NotificationsConfig(BaseModel):
    # Workaround for index commits arriving out of order downstream; not
    # required for correctness of scheduling.
    step_updated_delay: float = DEFAULT_STEP_UPDATED_DELAY


class VersioningConfig(BaseModel):
    sync_with_preservation: bool = False


class ServiceEndpoint(BaseModel):
    base_url: Optional[str] = None
    token: Optional[str] = None
    timeout: float = 10.0


class AccessionFlowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    ledger_url: Optional[str] = None
    workflows: WorkflowsConfig = WorkflowsConfig()
    routing: RoutingConfig = RoutingConfig()
    monitor: MonitorConfig = MonitorConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    versioning: VersioningConfig = VersioningConfig()
    preservation: ServiceEndpoint = ServiceEndpoint()
    indexing: ServiceEndpoint = ServiceEndpoint()


def load_config(path: Optional[str] = None) -> AccessionFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ACCESSIONFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ACCESSIONFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AccessionFlowConfig(**data)
    else:
        config = AccessionFlowConfig()

    env_db_url = os.getenv("ACCESSIONFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_ledger_url = os.getenv("ACCESSIONFLOW_LEDGER_URL")
    if env_ledger_url:
        config.ledger_url = env_ledger_url
    return config
