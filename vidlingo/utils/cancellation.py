"""Per-run cancellation token."""

from __future__ import annotations

import asyncio
from typing import Optional


class CancellationToken:
    """Checked before every stage and raced against in-flight activities."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancellation requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until cancelled; return ``False`` if ``timeout`` expires first."""
        if timeout is None:
            await self._event.wait()
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
