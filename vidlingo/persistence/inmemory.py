"""In-memory implementation of the run repository."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from ..errors import CheckpointConflictError
from ..models import Run, RunStatus
from .models import CheckpointRecord
from .repository import RunRepository


class InMemoryRunRepository(RunRepository):
    """Store runs and checkpoints in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, Run] = {}
        self._checkpoints: Dict[str, Dict[int, CheckpointRecord]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        if run.run_id in self._runs:
            raise ValueError(f"Run already exists: {run.run_id}")
        self._runs[run.run_id] = run.model_copy(deep=True)

    async def save_run(self, run: Run) -> None:
        self._runs[run.run_id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(self, status: RunStatus | None = None) -> list[Run]:
        runs = sorted(self._runs.values(), key=lambda r: r.created_at)
        return [
            r.model_copy(deep=True) for r in runs if status is None or r.status == status
        ]

    async def put_checkpoint(
        self, run_id: str, ordinal: int, stage_name: str, payload: dict[str, Any]
    ) -> CheckpointRecord:
        async with self._lock:
            records = self._checkpoints.setdefault(run_id, {})
            existing = records.get(ordinal)
            if existing is not None:
                if existing.stage_name == stage_name and existing.same_payload(payload):
                    return existing.model_copy(deep=True)
                raise CheckpointConflictError(
                    run_id, ordinal, "a different payload is already committed"
                )
            record = CheckpointRecord(
                run_id=run_id, ordinal=ordinal, stage_name=stage_name, payload=payload
            )
            records[ordinal] = record
            return record.model_copy(deep=True)

    async def get_checkpoints(self, run_id: str) -> list[CheckpointRecord]:
        records = self._checkpoints.get(run_id, {})
        return [records[o].model_copy(deep=True) for o in sorted(records)]

    async def purge_checkpoints(self, run_id: str) -> int:
        async with self._lock:
            return len(self._checkpoints.pop(run_id, {}))
