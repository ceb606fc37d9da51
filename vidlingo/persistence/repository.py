"""Repository abstraction for run and checkpoint persistence."""

from __future__ import annotations

from typing import Any, Protocol

from ..models import Run, RunStatus
from .models import CheckpointRecord


class RunRepository(Protocol):
    """Protocol for run state and checkpoint persistence backends.

    Checkpoints are append-only and written at most once per
    ``(run_id, ordinal)``. Rewriting one with an identical payload is a no-op;
    a different payload raises :class:`~vidlingo.errors.CheckpointConflictError`.
    """

    async def create_run(self, run: Run) -> None:
        """Persist a newly started run."""

    async def save_run(self, run: Run) -> None:
        """Persist the current state of an existing run."""

    async def get_run(self, run_id: str) -> Run | None:
        """Retrieve a run by id."""

    async def list_runs(self, status: RunStatus | None = None) -> list[Run]:
        """Return persisted runs, oldest first, optionally filtered by status."""

    async def put_checkpoint(
        self, run_id: str, ordinal: int, stage_name: str, payload: dict[str, Any]
    ) -> CheckpointRecord:
        """Record the output of a completed stage."""

    async def get_checkpoints(self, run_id: str) -> list[CheckpointRecord]:
        """Return the run's checkpoints ordered by ordinal."""

    async def purge_checkpoints(self, run_id: str) -> int:
        """Delete the run's checkpoints and return how many were removed."""
