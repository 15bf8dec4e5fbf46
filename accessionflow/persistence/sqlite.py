"""SQLite implementation of the step repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from ..constants import QUEUED, SKIPPED, WAITING
from ..contracts import WorkflowStep, utcnow
from ..errors import ConflictError, StepNotFoundError
from .models import STEP_COLUMNS, apply_error, apply_status, step_from_row
from .repository import StepRepository

_SELECT = f"SELECT {', '.join(STEP_COLUMNS)} FROM workflow_steps"
_MUTABLE = (
    "status",
    "attempts",
    "lifecycle",
    "error_message",
    "error_text",
    "note",
    "elapsed",
    "updated_at",
    "completed_at",
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


class SQLiteStepRepository(StepRepository):
    """Persist workflow steps using SQLite.

    The connection runs in autocommit mode; multi-statement operations open
    ``BEGIN IMMEDIATE`` so that the write lock is held from the first read,
    which makes claims atomic across processes sharing the database file.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=30
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
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
                elapsed REAL NOT NULL DEFAULT 0,
                active_version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                UNIQUE (object_id, workflow, version, process)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS workflow_steps_status_updated "
            "ON workflow_steps (status, updated_at)"
        )

    # ------------------------------------------------------------------
    # Helper methods
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            cur.execute("COMMIT")

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _newest(cur: sqlite3.Cursor, object_id: str, workflow: str, process: str) -> WorkflowStep:
        cur.execute(
            f"{_SELECT} WHERE object_id = ? AND workflow = ? AND process = ? "
            "ORDER BY version DESC LIMIT 1",
            (object_id, workflow, process),
        )
        row = cur.fetchone()
        if row is None:
            raise StepNotFoundError(object_id, workflow, process)
        return step_from_row(row)

    @staticmethod
    def _save(cur: sqlite3.Cursor, step: WorkflowStep) -> None:
        values = []
        for col in _MUTABLE:
            value = getattr(step, col)
            values.append(_ts(value) if isinstance(value, datetime) else value)
        assignments = ", ".join(f"{col} = ?" for col in _MUTABLE)
        cur.execute(f"UPDATE workflow_steps SET {assignments} WHERE id = ?", (*values, step.id))

    # ------------------------------------------------------------------
    # Synchronous operations run via ``asyncio.to_thread``
    def _create_workflow(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        first = steps[0]
        with self._transaction() as cur:
            cur.execute(
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND version = ? ORDER BY id",
                (first.object_id, first.workflow, first.version),
            )
            existing = cur.fetchall()
            if existing:
                return [step_from_row(r) for r in existing]

            cur.execute(
                "SELECT MAX(version) FROM workflow_steps WHERE object_id = ?",
                (first.object_id,),
            )
            newest = cur.fetchone()[0]
            active = newest is None or first.version >= newest
            if active:
                cur.execute(
                    "UPDATE workflow_steps SET active_version = 0 "
                    "WHERE object_id = ? AND version < ?",
                    (first.object_id, first.version),
                )
            for step in steps:
                cur.execute(
                    """
                    INSERT INTO workflow_steps (object_id, workflow, version, process, status,
                        attempts, lane, lifecycle, note, elapsed, active_version,
                        created_at, updated_at, completed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        step.object_id,
                        step.workflow,
                        step.version,
                        step.process,
                        step.status,
                        step.attempts,
                        step.lane,
                        step.lifecycle,
                        step.note,
                        step.elapsed,
                        int(active),
                        _ts(step.created_at),
                        _ts(step.updated_at),
                        _ts(step.completed_at),
                    ),
                )
            cur.execute(
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND version = ? ORDER BY id",
                (first.object_id, first.workflow, first.version),
            )
            return [step_from_row(r) for r in cur.fetchall()]

    def _update_status(
        self,
        object_id: str,
        workflow: str,
        process: str,
        status: str,
        elapsed: float,
        lifecycle: Optional[str],
        note: Optional[str],
        expected_status: Optional[str],
    ) -> WorkflowStep:
        with self._transaction() as cur:
            step = self._newest(cur, object_id, workflow, process)
            if expected_status and step.status != expected_status:
                raise ConflictError(object_id, workflow, process, expected_status, step.status)
            updated = apply_status(step, status, elapsed, lifecycle, note)
            self._save(cur, updated)
            return updated

    def _update_error(
        self, object_id: str, workflow: str, process: str, message: str, text: Optional[str]
    ) -> WorkflowStep:
        with self._transaction() as cur:
            step = self._newest(cur, object_id, workflow, process)
            updated = apply_error(step, message, text)
            self._save(cur, updated)
            return updated

    def _claim_waiting(
        self, object_id: str, workflow: str, version: int, processes: list[str]
    ) -> list[WorkflowStep]:
        placeholders = ", ".join("?" for _ in processes)
        with self._transaction() as cur:
            cur.execute(
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND version = ? "
                f"AND status = ? AND process IN ({placeholders}) ORDER BY id",
                (object_id, workflow, version, WAITING, *processes),
            )
            ready = [step_from_row(r) for r in cur.fetchall()]
            now = utcnow()
            claimed = []
            for step in ready:
                updated = step.model_copy(update={"status": QUEUED, "updated_at": now})
                self._save(cur, updated)
                claimed.append(updated)
            return claimed

    def _skip_all(self, object_id: str, workflow: str, note: Optional[str]) -> list[WorkflowStep]:
        with self._transaction() as cur:
            cur.execute(
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND active_version = 1 ORDER BY id",
                (object_id, workflow),
            )
            skipped = []
            for row in cur.fetchall():
                updated = apply_status(step_from_row(row), SKIPPED, note=note)
                self._save(cur, updated)
                skipped.append(updated)
            return skipped

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        if not steps:
            return []
        return await asyncio.to_thread(self._create_workflow, steps)

    async def get_step(
        self,
        object_id: str,
        workflow: str,
        process: str,
        version: Optional[int] = None,
    ) -> WorkflowStep:
        if version is None:
            query = (
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND process = ? "
                "ORDER BY version DESC LIMIT 1"
            )
            rows = await asyncio.to_thread(self._fetchall, query, object_id, workflow, process)
        else:
            query = (
                f"{_SELECT} WHERE object_id = ? AND workflow = ? AND process = ? AND version = ?"
            )
            rows = await asyncio.to_thread(
                self._fetchall, query, object_id, workflow, process, version
            )
        if not rows:
            raise StepNotFoundError(object_id, workflow, process)
        return step_from_row(rows[0])

    async def list_steps(
        self,
        object_id: str,
        workflow: Optional[str] = None,
        version: Optional[int] = None,
    ) -> list[WorkflowStep]:
        clauses = ["object_id = ?"]
        params: list[Any] = [object_id]
        if workflow is not None:
            clauses.append("workflow = ?")
            params.append(workflow)
        if version is not None:
            clauses.append("version = ?")
            params.append(version)
        query = f"{_SELECT} WHERE {' AND '.join(clauses)} ORDER BY id"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
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
        return await asyncio.to_thread(
            self._update_status,
            object_id,
            workflow,
            process,
            status,
            elapsed,
            lifecycle,
            note,
            expected_status,
        )

    async def update_error(
        self,
        object_id: str,
        workflow: str,
        process: str,
        message: str,
        text: Optional[str] = None,
    ) -> WorkflowStep:
        return await asyncio.to_thread(
            self._update_error, object_id, workflow, process, message, text
        )

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
        return await asyncio.to_thread(self._claim_waiting, object_id, workflow, version, names)

    async def skip_all(
        self, object_id: str, workflow: str, note: Optional[str] = None
    ) -> list[WorkflowStep]:
        return await asyncio.to_thread(self._skip_all, object_id, workflow, note)

    async def find_stale(
        self, status: str, older_than: datetime, limit: int = 500
    ) -> list[WorkflowStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"{_SELECT} WHERE status = ? AND updated_at < ? ORDER BY updated_at LIMIT ?",
            status,
            _ts(older_than),
            limit,
        )
        return [step_from_row(r) for r in rows]
