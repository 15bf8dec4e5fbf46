"""Step store: persisted per-object, per-version workflow step state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import AccessionFlowConfig, load_config
from .inmemory import InMemoryStepRepository
from .models import apply_error, apply_status, step_from_row
from .repository import StepRepository
from .sqlite import SQLiteStepRepository

_repository_instance: StepRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[AccessionFlowConfig] = None
) -> StepRepository:
    """Factory function to obtain a step repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``ACCESSIONFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("ACCESSIONFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryStepRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteStepRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        from .postgres import PostgresStepRepository

        _repository_instance = PostgresStepRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "StepRepository",
    "InMemoryStepRepository",
    "SQLiteStepRepository",
    "apply_error",
    "apply_status",
    "get_repository",
    "step_from_row",
]
