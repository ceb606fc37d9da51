"""In-memory progress publisher for single-process deployments and tests."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from ..models import ProgressSnapshot
from .base import BaseProgressPublisher, merge_snapshot


class InMemoryProgressPublisher(BaseProgressPublisher):
    def __init__(self) -> None:
        self._snapshots: Dict[str, ProgressSnapshot] = {}
        self._lock = asyncio.Lock()

    async def _load(self, run_id: str) -> Optional[ProgressSnapshot]:
        return self._snapshots.get(run_id)

    async def _store(self, snapshot: ProgressSnapshot) -> None:
        self._snapshots[snapshot.run_id] = snapshot

    async def update(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        async with self._lock:
            previous = self._snapshots.get(snapshot.run_id)
            merged = merge_snapshot(previous, snapshot)
            if merged is None:
                return previous
            self._snapshots[snapshot.run_id] = merged
            return merged

    async def delete(self, run_id: str) -> None:
        self._snapshots.pop(run_id, None)
