"""Base progress publisher interface."""

from __future__ import annotations

import abc
import logging
from typing import Optional

from ..models import ProgressSnapshot, utcnow

logger = logging.getLogger(__name__)


class BaseProgressPublisher(metaclass=abc.ABCMeta):
    """Single-writer, multi-reader store of the latest snapshot per run.

    Every accepted update replaces the stored snapshot wholesale, bumps its
    ``version`` and never lets ``percent_complete`` go backwards. Once a
    terminal snapshot is stored, later updates are refused.
    """

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def _load(self, run_id: str) -> Optional[ProgressSnapshot]:
        raise NotImplementedError

    @abc.abstractmethod
    async def _store(self, snapshot: ProgressSnapshot) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, run_id: str) -> None:
        """Forget the run's snapshot."""
        raise NotImplementedError

    async def query(self, run_id: str) -> Optional[ProgressSnapshot]:
        """Return the latest snapshot, or ``None`` for an unknown run."""
        return await self._load(run_id)

    async def update(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        """Publish ``snapshot`` and return what is stored afterwards."""
        previous = await self._load(snapshot.run_id)
        merged = merge_snapshot(previous, snapshot)
        if merged is None:
            return previous
        await self._store(merged)
        return merged

    async def reset(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        """Replace the snapshot unconditionally, keeping the version sequence.

        Used when a terminal run is resumed and becomes live again.
        """
        previous = await self._load(snapshot.run_id)
        version = previous.version + 1 if previous else 1
        stored = snapshot.model_copy(update={"version": version, "updated_at": utcnow()})
        await self._store(stored)
        return stored


def merge_snapshot(
    previous: Optional[ProgressSnapshot], snapshot: ProgressSnapshot
) -> Optional[ProgressSnapshot]:
    """Apply the publishing rules; ``None`` means the update is refused."""
    if previous is not None and previous.is_terminal:
        logger.warning(
            f"Ignoring progress update for {snapshot.run_id}: run already {previous.status}"
        )
        return None
    percent = snapshot.percent_complete
    version = 1
    if previous is not None:
        percent = max(previous.percent_complete, percent)
        version = previous.version + 1
    if percent == 100 and snapshot.status != "completed":
        percent = 99
    return snapshot.model_copy(
        update={"percent_complete": percent, "version": version, "updated_at": utcnow()}
    )
