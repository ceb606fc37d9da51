"""Circuit breakers guarding downstream dependencies.

One breaker exists per dependency name (``openai``, ``ffmpeg``...) and is
shared by every run executing in the process. After ``failure_threshold``
consecutive transient failures the breaker opens and calls fail fast with
:class:`~vidlingo.errors.DependencyUnavailableError` until the cooldown
elapses. The first call after the cooldown is a trial: success closes the
breaker, failure opens it again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Dict, Optional

from .config import BreakerConfig
from .errors import DependencyUnavailableError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _remaining_cooldown(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.cooldown_seconds - elapsed)

    async def before_call(self) -> None:
        """Raise ``DependencyUnavailableError`` if the call must not be made."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.OPEN:
                remaining = self._remaining_cooldown()
                if remaining > 0:
                    raise DependencyUnavailableError(self.name, remaining)
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit for {self.name} half-open, allowing trial call")
            if self._trial_in_flight:
                raise DependencyUnavailableError(self.name, 0.0)
            self._trial_in_flight = True

    async def record_success(self) -> None:
        async with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"Circuit for {self.name} closed")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._trial_in_flight = False
            if (
                self._state == CircuitState.HALF_OPEN
                or self._failure_count >= self.config.failure_threshold
            ):
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        f"Circuit for {self.name} opened after "
                        f"{self._failure_count} consecutive failures"
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    async def release(self) -> None:
        """Give back a trial slot without judging the dependency."""
        async with self._lock:
            self._trial_in_flight = False


class BreakerRegistry:
    """Process-wide breakers keyed by dependency name."""

    def __init__(
        self,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or BreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, dependency: str) -> CircuitBreaker:
        breaker = self._breakers.get(dependency)
        if breaker is None:
            breaker = CircuitBreaker(dependency, self._config, clock=self._clock)
            self._breakers[dependency] = breaker
        return breaker

    def states(self) -> Dict[str, CircuitState]:
        return {name: b.state for name, b in self._breakers.items()}
