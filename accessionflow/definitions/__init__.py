"""Workflow definitions (process graphs)."""

from __future__ import annotations

from .loader import (
    BUILTIN_WORKFLOWS_DIR,
    DefinitionCache,
    initial_steps,
    parse_definition,
    validate_definition,
)

__all__ = [
    "BUILTIN_WORKFLOWS_DIR",
    "DefinitionCache",
    "initial_steps",
    "parse_definition",
    "validate_definition",
]
