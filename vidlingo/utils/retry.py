from __future__ import annotations

import asyncio
import random
from typing import Optional

from .cancellation import CancellationToken


def compute_backoff(
    attempt: int, base: float = 2.0, cap: float = 60.0, jitter: float = 0.5
) -> float:
    """Compute capped exponential backoff with jitter.

    ``attempt`` is zero-based: the first retry waits roughly ``base`` seconds.
    """
    delay = min(cap, base * 2**attempt)
    if jitter:
        delay += random.uniform(0, jitter)
    return min(cap, delay)


async def schedule_retry(
    delay: float, cancel_token: Optional[CancellationToken] = None
) -> None:
    """Sleep for ``delay`` seconds, waking early if the run gets cancelled."""
    if cancel_token is None:
        await asyncio.sleep(delay)
        return
    await cancel_token.wait(timeout=delay)
