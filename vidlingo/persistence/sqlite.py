"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import CheckpointConflictError
from ..models import Run, RunStatus, utcnow
from .models import CheckpointRecord
from .repository import RunRepository


class SQLiteRunRepository(RunRepository):
    """Persist runs and checkpoints using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # worker threads share one connection
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    run_id TEXT NOT NULL,
                    ordinal INTEGER NOT NULL,
                    stage_name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    committed_at TEXT NOT NULL,
                    PRIMARY KEY (run_id, ordinal)
                )
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _insert_checkpoint(
        self, run_id: str, ordinal: int, stage_name: str, payload: dict[str, Any]
    ) -> CheckpointRecord:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                "SELECT stage_name, payload, committed_at FROM checkpoints WHERE run_id = ? AND ordinal = ?",
                (run_id, ordinal),
            )
            row = cur.fetchone()
            if row is not None:
                existing = _checkpoint_from_row(run_id, ordinal, row)
                if existing.stage_name == stage_name and existing.same_payload(payload):
                    return existing
                raise CheckpointConflictError(
                    run_id, ordinal, "a different payload is already committed"
                )
            record = CheckpointRecord(
                run_id=run_id, ordinal=ordinal, stage_name=stage_name, payload=payload
            )
            cur.execute(
                "INSERT INTO checkpoints (run_id, ordinal, stage_name, payload, committed_at) VALUES (?, ?, ?, ?, ?)",
                (
                    run_id,
                    ordinal,
                    stage_name,
                    json.dumps(payload),
                    record.committed_at.isoformat(),
                ),
            )
            self._conn.commit()
            return record

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run: Run) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO runs (run_id, status, created_at, updated_at, data) VALUES (?, ?, ?, ?, ?)",
            run.run_id,
            run.status.value,
            run.created_at.isoformat(),
            run.updated_at.isoformat(),
            run.model_dump_json(),
        )

    async def save_run(self, run: Run) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO runs (run_id, status, created_at, updated_at, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                status = excluded.status,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            run.run_id,
            run.status.value,
            run.created_at.isoformat(),
            run.updated_at.isoformat(),
            run.model_dump_json(),
        )

    async def get_run(self, run_id: str) -> Run | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM runs WHERE run_id = ?", run_id
        )
        if not row:
            return None
        return Run.model_validate_json(row["data"])

    async def list_runs(self, status: RunStatus | None = None) -> list[Run]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT data FROM runs ORDER BY created_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM runs WHERE status = ? ORDER BY created_at",
                status.value,
            )
        return [Run.model_validate_json(r["data"]) for r in rows]

    async def put_checkpoint(
        self, run_id: str, ordinal: int, stage_name: str, payload: dict[str, Any]
    ) -> CheckpointRecord:
        return await asyncio.to_thread(
            self._insert_checkpoint, run_id, ordinal, stage_name, payload
        )

    async def get_checkpoints(self, run_id: str) -> list[CheckpointRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT ordinal, stage_name, payload, committed_at FROM checkpoints WHERE run_id = ? ORDER BY ordinal",
            run_id,
        )
        return [_checkpoint_from_row(run_id, r["ordinal"], r) for r in rows]

    async def purge_checkpoints(self, run_id: str) -> int:
        return await asyncio.to_thread(
            self._execute, "DELETE FROM checkpoints WHERE run_id = ?", run_id
        )


def _checkpoint_from_row(run_id: str, ordinal: int, row: sqlite3.Row) -> CheckpointRecord:
    committed_at = row["committed_at"]
    return CheckpointRecord(
        run_id=run_id,
        ordinal=ordinal,
        stage_name=row["stage_name"],
        payload=json.loads(row["payload"]),
        committed_at=datetime.fromisoformat(committed_at) if committed_at else utcnow(),
    )
