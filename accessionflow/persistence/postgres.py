"""PostgreSQL implementation of the step repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

import asyncpg

from ..constants import QUEUED, SKIPPED, WAITING
from ..contracts import WorkflowStep, utcnow
from ..errors import ConflictError, StepNotFoundError
from .models import STEP_COLUMNS, apply_error, apply_status, step_from_row
from .repository import StepRepository

_COLUMNS = ", ".join(STEP_COLUMNS)
_SELECT = f"SELECT {_COLUMNS} FROM workflow_steps"


class PostgresStepRepository(StepRepository):
    """Persist workflow steps using PostgreSQL.

    Claims are a single conditional ``UPDATE ... RETURNING`` so concurrent
    evaluation passes cannot both move the same row out of ``waiting``.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id SERIAL PRIMARY KEY,
                object_id TEXT NOT NULL,
                workflow TEXT NOT NULL,
                version INTEGER NOT NULL,
                process TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                lane TEXT NOT NULL DEFAULT 'default',
                lifecycle TEXT,
                error_message TEXT,
                error_text TEXT,
                note TEXT,
                elapsed DOUBLE PRECISION NOT NULL DEFAULT 0,
                active_version BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                UNIQUE (object_id, workflow, version, process)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS workflow_steps_status_updated "
            "ON workflow_steps (status, updated_at)"
        )

    @staticmethod
    async def _newest_for_update(
        conn: asyncpg.Connection, object_id: str, workflow: str, process: str
    ) -> WorkflowStep:
        row = await conn.fetchrow(
            f"{_SELECT} WHERE object_id = $1 AND workflow = $2 AND process = $3 "
            "ORDER BY version DESC LIMIT 1 FOR UPDATE",
            object_id,
            workflow,
            process,
        )
        if row is None:
            raise StepNotFoundError(object_id, workflow, process)
        return step_from_row(row)

    @staticmethod
    async def _save(conn: asyncpg.Connection, step: WorkflowStep) -> WorkflowStep:
        row = await conn.fetchrow(
            f"""
            UPDATE workflow_steps
            SET status = $1, attempts = $2, lifecycle = $3, error_message = $4,
                error_text = $5, note = $6, elapsed = $7, updated_at = $8, completed_at = $9
            WHERE id = $10
            RETURNING {_COLUMNS}
            """,
            step.status,
            step.attempts,
            step.lifecycle,
            step.error_message,
            step.error_text,
            step.note,
            step.elapsed,
            step.updated_at,
            step.completed_at,
            step.id,
        )
        return step_from_row(row)

    # ------------------------------------------------------------------
    async def create_workflow(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        if not steps:
            return []
        first = steps[0]
        conn = await self._connect()
        try:
            async with conn.transaction():
                # Serialise instantiation per object.
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", first.object_id)
                existing = await conn.fetch(
                    f"{_SELECT} WHERE object_id = $1 AND workflow = $2 AND version = $3 ORDER BY id",
                    first.object_id,
                    first.workflow,
                    first.version,
                )
                if existing:
                    return [step_from_row(r) for r in existing]

                newest = await conn.fetchval(
                    "SELECT MAX(version) FROM workflow_steps WHERE object_id = $1",
                    first.object_id,
                )
                active = newest is None or first.version >= newest
                if active:
                    await conn.execute(
                        "UPDATE workflow_steps SET active_version = FALSE "
                        "WHERE object_id = $1 AND version < $2",
                        first.object_id,
                        first.version,
                    )
                await conn.executemany(
                    """
                    INSERT INTO workflow_steps (object_id, workflow, version, process, status,
                        attempts, lane, lifecycle, note, elapsed, active_version,
                        created_at, updated_at, completed_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                    ON CONFLICT (object_id, workflow, version, process) DO NOTHING
                    """,
                    [
                        (
                            s.object_id,
                            s.workflow,
                            s.version,
                            s.process,
                            s.status,
                            s.attempts,
                            s.lane,
                            s.lifecycle,
                            s.note,
                            s.elapsed,
                            active,
                            s.created_at,
                            s.updated_at,
                            s.completed_at,
                        )
                        for s in steps
                    ],
                )
                rows = await conn.fetch(
                    f"{_SELECT} WHERE object_id = $1 AND workflow = $2 AND version = $3 ORDER BY id",
                    first.object_id,
                    first.workflow,
                    first.version,
                )
        finally:
            await conn.close()
        return [step_from_row(r) for r in rows]

    async def get_step(
        self,
        object_id: str,
        workflow: str,
        process: str,
        version: Optional[int] = None,
    ) -> WorkflowStep:
        conn = await self._connect()
        try:
            if version is None:
                row = await conn.fetchrow(
                    f"{_SELECT} WHERE object_id = $1 AND workflow = $2 AND process = $3 "
                    "ORDER BY version DESC LIMIT 1",
                    object_id,
                    workflow,
                    process,
                )
            else:
                row = await conn.fetchrow(
                    f"{_SELECT} WHERE object_id = $1 AND workflow = $2 AND process = $3 "
                    "AND version = $4",
                    object_id,
                    workflow,
                    process,
                    version,
                )
        finally:
            await conn.close()
        if row is None:
            raise StepNotFoundError(object_id, workflow, process)
        return step_from_row(row)

    async def list_steps(
        self,
        object_id: str,
        workflow: Optional[str] = None,
        version: Optional[int] = None,
    ) -> list[WorkflowStep]:
        clauses = ["object_id = $1"]
        params: list[Any] = [object_id]
        if workflow is not None:
            params.append(workflow)
            clauses.append(f"workflow = ${len(params)}")
        if version is not None:
            params.append(version)
            clauses.append(f"version = ${len(params)}")
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"{_SELECT} WHERE {' AND '.join(clauses)} ORDER BY id", *params
            )
        finally:
            await conn.close()
        return [step_from_row(r) for r in rows]

    async def update_status(
        self,
        object_id: str,
        workflow: str,
        process: str,
        status: str,
        elapsed: float = 0,
        lifecycle: Optional[str] = None,
        note: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> WorkflowStep:
        conn = await self._connect()
        try:
            async with conn.transaction():
                step = await self._newest_for_update(conn, object_id, workflow, process)
                if expected_status and step.status != expected_status:
                    raise ConflictError(
                        object_id, workflow, process, expected_status, step.status
                    )
                return await self._save(
                    conn, apply_status(step, status, elapsed, lifecycle, note)
                )
        finally:
            await conn.close()

    async def update_error(
        self,
        object_id: str,
        workflow: str,
        process: str,
        message: str,
        text: Optional[str] = None,
    ) -> WorkflowStep:
        conn = await self._connect()
        try:
            async with conn.transaction():
                step = await self._newest_for_update(conn, object_id, workflow, process)
                return await self._save(conn, apply_error(step, message, text))
        finally:
            await conn.close()

    async def claim_waiting(
        self,
        object_id: str,
        workflow: str,
        version: int,
        processes: Iterable[str],
    ) -> list[WorkflowStep]:
        names = sorted(set(processes))
        if not names:
            return []
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                UPDATE workflow_steps
                SET status = $1, updated_at = $2
                WHERE object_id = $3 AND workflow = $4 AND version = $5
                  AND process = ANY($6::text[]) AND status = $7
                RETURNING {_COLUMNS}
                """,
                QUEUED,
                utcnow(),
                object_id,
                workflow,
                version,
                names,
                WAITING,
            )
        finally:
            await conn.close()
        return sorted((step_from_row(r) for r in rows), key=lambda s: s.id or 0)

    async def skip_all(
        self, object_id: str, workflow: str, note: Optional[str] = None
    ) -> list[WorkflowStep]:
        now = utcnow()
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                UPDATE workflow_steps
                SET status = $1, note = $2, updated_at = $3, error_message = NULL,
                    error_text = NULL, completed_at = COALESCE(completed_at, $3)
                WHERE object_id = $4 AND workflow = $5 AND active_version
                RETURNING {_COLUMNS}
                """,
                SKIPPED,
                note,
                now,
                object_id,
                workflow,
            )
        finally:
            await conn.close()
        return sorted((step_from_row(r) for r in rows), key=lambda s: s.id or 0)

    async def find_stale(
        self, status: str, older_than: datetime, limit: int = 500
    ) -> list[WorkflowStep]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"{_SELECT} WHERE status = $1 AND updated_at < $2 ORDER BY updated_at LIMIT $3",
                status,
                older_than,
                limit,
            )
        finally:
            await conn.close()
        return [step_from_row(r) for r in rows]
