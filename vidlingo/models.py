from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .contracts import RunInput, RunResult
from .errors import PipelineError, classify_error


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)


class RunError(BaseModel):
    """Terminal error recorded on a run."""

    kind: str
    message: str
    stage: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException, stage: Optional[str] = None) -> "RunError":
        message = exc.message if isinstance(exc, PipelineError) else str(exc)
        return cls(kind=classify_error(exc), message=message or type(exc).__name__, stage=stage)


class Run(BaseModel):
    """One execution of the pipeline for one input."""

    run_id: str
    input: RunInput
    status: RunStatus = RunStatus.PENDING
    current_stage_index: int = 0
    stage_results: Dict[int, Dict[str, Any]] = Field(default_factory=dict)
    result: Optional[RunResult] = None
    error: Optional[RunError] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def touch(self) -> None:
        self.updated_at = utcnow()


class RunDescription(BaseModel):
    """What ``describe`` returns to front ends."""

    run_id: str
    status: RunStatus
    result: Optional[RunResult] = None
    error: Optional[RunError] = None

    @classmethod
    def from_run(cls, run: Run) -> "RunDescription":
        return cls(
            run_id=run.run_id,
            status=run.status,
            result=run.result if run.status == RunStatus.COMPLETED else None,
            error=run.error,
        )


class ProgressSnapshot(BaseModel):
    """Point-in-time progress of a run, replaced wholesale on every update."""

    run_id: str
    current_stage_index: int = 0
    total_stages: int = 0
    stage_name: str = "pending"
    message: str = "Starting"
    percent_complete: int = Field(default=0, ge=0, le=100)
    status: str = "pending"  # pending, running, completed, failed, cancelled
    error: Optional[RunError] = None
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed", "cancelled")
