"""Activity execution engine: one stage invocation under its policy."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from .activities.base import ActivityContext, PipelineActivities, TempFileScope
from .breaker import BreakerRegistry
from .errors import (
    ActivityTimeoutError,
    PermanentInputError,
    PipelineError,
    RetriesExhaustedError,
    RunCancelledError,
    classify_error,
)
from .stages import StageDefinition
from .utils import retry
from .utils.cancellation import CancellationToken
from .utils.ids import idempotency_key

logger = logging.getLogger(__name__)


class ActivityExecutor:
    """Invokes stage activities with timeout, retry and circuit breaking."""

    def __init__(
        self,
        activities: PipelineActivities,
        breakers: BreakerRegistry | None = None,
        temp_dir: str | Path = "/tmp/vidlingo",
    ) -> None:
        self._activities = activities
        self._breakers = breakers or BreakerRegistry()
        self._temp_dir = Path(temp_dir)

    @property
    def breakers(self) -> BreakerRegistry:
        return self._breakers

    def temp_scope(self, run_id: str) -> TempFileScope:
        return TempFileScope(self._temp_dir / run_id)

    async def invoke_with_policy(
        self,
        run_id: str,
        stage: StageDefinition,
        request: BaseModel,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BaseModel:
        """Run ``stage`` until it succeeds, fails permanently or runs out of attempts.

        Raises:
            RunCancelledError: the token fired before or during an attempt.
            PermanentInputError: the activity rejected its input.
            DependencyUnavailableError: the dependency's circuit is open.
            RetriesExhaustedError: every attempt failed transiently.
        """
        key = idempotency_key(run_id, stage.ordinal, request)
        breaker = self._breakers.get(stage.dependency)
        scope = self.temp_scope(run_id)
        last_error: BaseException | None = None

        for attempt in range(stage.max_attempts):
            if cancel_token is not None and cancel_token.cancelled:
                raise RunCancelledError(cancel_token.reason or "Run cancelled")

            await breaker.before_call()
            ctx = ActivityContext(
                run_id=run_id,
                stage=stage.name,
                ordinal=stage.ordinal,
                attempt=attempt + 1,
                idempotency_key=key,
                temp_files=scope,
                cancel_token=cancel_token,
            )
            try:
                output = await self._attempt(stage, ctx, request, cancel_token)
            except (RunCancelledError, asyncio.CancelledError):
                # a cancelled attempt says nothing about the dependency
                await breaker.release()
                raise
            except Exception as e:
                kind = classify_error(e)
                if kind != "transient_dependency":
                    await breaker.release()
                    if isinstance(e, PipelineError):
                        raise
                    raise PermanentInputError(f"{stage.name}: {e}") from e
                await breaker.record_failure()
                last_error = e
                logger.warning(
                    f"Stage {stage.name} attempt {attempt + 1}/{stage.max_attempts} "
                    f"for run {run_id} failed: {type(e).__name__}: {e}"
                )
                if attempt + 1 >= stage.max_attempts:
                    break
                delay = retry.compute_backoff(
                    attempt, stage.backoff_base, stage.backoff_cap, stage.backoff_jitter
                )
                logger.info(f"Retrying {stage.name} in {delay:.2f}s")
                await retry.schedule_retry(delay, cancel_token)
                continue

            await breaker.record_success()
            return self._coerce(stage, output)

        assert last_error is not None
        raise RetriesExhaustedError(stage.name, stage.max_attempts, last_error) from last_error

    async def _attempt(
        self,
        stage: StageDefinition,
        ctx: ActivityContext,
        request: BaseModel,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        task = asyncio.ensure_future(
            asyncio.wait_for(
                stage.invoke(self._activities, ctx, request), timeout=stage.timeout
            )
        )
        if cancel_token is None:
            return await self._await_attempt(stage, task)

        cancel_wait = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait(
                {task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Cancelled {stage.name} attempt raised {e!r}")
            raise RunCancelledError(cancel_token.reason or "Run cancelled")
        return await self._await_attempt(stage, task)

    async def _await_attempt(self, stage: StageDefinition, task: asyncio.Future) -> Any:
        try:
            return await task
        except asyncio.TimeoutError as e:
            raise ActivityTimeoutError(
                f"{stage.name} timed out after {stage.timeout:g}s"
            ) from e

    def _coerce(self, stage: StageDefinition, output: Any) -> BaseModel:
        if isinstance(output, stage.output_model):
            return output
        return stage.output_model.model_validate(
            output.model_dump() if isinstance(output, BaseModel) else output
        )
