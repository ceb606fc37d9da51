"""Data models for persisted checkpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..models import utcnow
from ..utils.ids import canonical_json


class CheckpointRecord(BaseModel):
    """Durable output of one completed stage of one run."""

    run_id: str
    ordinal: int = Field(..., ge=0)
    stage_name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    committed_at: datetime = Field(default_factory=utcnow)

    def same_payload(self, payload: dict[str, Any]) -> bool:
        return canonical_json(self.payload) == canonical_json(payload)
