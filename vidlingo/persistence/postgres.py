"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

import json
from typing import Any

import asyncpg

from ..errors import CheckpointConflictError
from ..models import Run, RunStatus
from .models import CheckpointRecord
from .repository import RunRepository


class PostgresRunRepository(RunRepository):
    """Persist runs and checkpoints using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                run_id TEXT NOT NULL,
                ordinal INTEGER NOT NULL,
                stage_name TEXT NOT NULL,
                payload JSONB NOT NULL,
                committed_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (run_id, ordinal)
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO runs (run_id, status, created_at, updated_at, data) VALUES ($1, $2, $3, $4, $5)",
                run.run_id,
                run.status.value,
                run.created_at,
                run.updated_at,
                run.model_dump_json(),
            )
        finally:
            await conn.close()

    async def save_run(self, run: Run) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO runs (run_id, status, created_at, updated_at, data)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (run_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    updated_at = EXCLUDED.updated_at,
                    data = EXCLUDED.data
                """,
                run.run_id,
                run.status.value,
                run.created_at,
                run.updated_at,
                run.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> Run | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT data FROM runs WHERE run_id = $1", run_id)
        finally:
            await conn.close()
        if not row:
            return None
        return Run.model_validate_json(row["data"])

    async def list_runs(self, status: RunStatus | None = None) -> list[Run]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch("SELECT data FROM runs ORDER BY created_at")
            else:
                rows = await conn.fetch(
                    "SELECT data FROM runs WHERE status = $1 ORDER BY created_at",
                    status.value,
                )
        finally:
            await conn.close()
        return [Run.model_validate_json(r["data"]) for r in rows]

    async def put_checkpoint(
        self, run_id: str, ordinal: int, stage_name: str, payload: dict[str, Any]
    ) -> CheckpointRecord:
        record = CheckpointRecord(
            run_id=run_id, ordinal=ordinal, stage_name=stage_name, payload=payload
        )
        conn = await self._connect()
        try:
            inserted = await conn.fetchval(
                """
                INSERT INTO checkpoints (run_id, ordinal, stage_name, payload, committed_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (run_id, ordinal) DO NOTHING
                RETURNING ordinal
                """,
                run_id,
                ordinal,
                stage_name,
                json.dumps(payload),
                record.committed_at,
            )
            if inserted is not None:
                return record
            row = await conn.fetchrow(
                "SELECT stage_name, payload, committed_at FROM checkpoints WHERE run_id = $1 AND ordinal = $2",
                run_id,
                ordinal,
            )
        finally:
            await conn.close()
        existing = CheckpointRecord(
            run_id=run_id,
            ordinal=ordinal,
            stage_name=row["stage_name"],
            payload=json.loads(row["payload"]),
            committed_at=row["committed_at"],
        )
        if existing.stage_name == stage_name and existing.same_payload(payload):
            return existing
        raise CheckpointConflictError(
            run_id, ordinal, "a different payload is already committed"
        )

    async def get_checkpoints(self, run_id: str) -> list[CheckpointRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT ordinal, stage_name, payload, committed_at FROM checkpoints WHERE run_id = $1 ORDER BY ordinal",
                run_id,
            )
        finally:
            await conn.close()
        return [
            CheckpointRecord(
                run_id=run_id,
                ordinal=r["ordinal"],
                stage_name=r["stage_name"],
                payload=json.loads(r["payload"]),
                committed_at=r["committed_at"],
            )
            for r in rows
        ]

    async def purge_checkpoints(self, run_id: str) -> int:
        conn = await self._connect()
        try:
            status = await conn.execute(
                "DELETE FROM checkpoints WHERE run_id = $1", run_id
            )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(status.split()[-1])
