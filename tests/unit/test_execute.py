"""Stage invocation under timeout, retry, breaker and cancellation."""

import asyncio
import errno

import pytest

from vidlingo.breaker import BreakerRegistry, CircuitState
from vidlingo.config import BreakerConfig, StagePolicy
from vidlingo.contracts import TranslateRequest, Translation
from vidlingo.errors import (
    ActivityTimeoutError,
    DependencyUnavailableError,
    PermanentInputError,
    RetriesExhaustedError,
    RunCancelledError,
)
from vidlingo.execute import ActivityExecutor
from vidlingo.stages import PIPELINE_STAGES
from vidlingo.utils.cancellation import CancellationToken

TRANSLATE = PIPELINE_STAGES[2].with_policy(
    StagePolicy(timeout_seconds=1, max_attempts=3, backoff_base=0, backoff_cap=0, backoff_jitter=0)
)
REQUEST = TranslateRequest(text="Hello", source_language="english", target_language="Spanish")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _executor(activities, tmp_path, threshold=50) -> ActivityExecutor:
    return ActivityExecutor(
        activities,
        breakers=BreakerRegistry(BreakerConfig(failure_threshold=threshold, cooldown_seconds=60)),
        temp_dir=tmp_path / "tmp",
    )


@pytest.mark.asyncio
async def test_success_passes_idempotency_key(activities, tmp_path):
    executor = _executor(activities, tmp_path)
    output = await executor.invoke_with_policy("run-1", TRANSLATE, REQUEST)

    assert isinstance(output, Translation)
    ctx = activities.contexts[0]
    assert ctx.stage == "translate"
    assert ctx.ordinal == 2
    assert ctx.attempt == 1
    assert len(ctx.idempotency_key) == 64


@pytest.mark.asyncio
async def test_transient_failures_retry_with_same_key(activities, tmp_path):
    activities.fail("translate", ConnectionResetError(errno.ECONNRESET, "reset"))
    executor = _executor(activities, tmp_path)

    await executor.invoke_with_policy("run-1", TRANSLATE, REQUEST)

    assert activities.calls == ["translate", "translate"]
    first, second = activities.contexts
    assert (first.attempt, second.attempt) == (1, 2)
    assert first.idempotency_key == second.idempotency_key


@pytest.mark.asyncio
async def test_retry_bound(activities, tmp_path):
    activities.fail("translate", *[ConnectionResetError("reset") for _ in range(5)])
    executor = _executor(activities, tmp_path)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await executor.invoke_with_policy("run-1", TRANSLATE, REQUEST)

    assert len(activities.calls) == TRANSLATE.max_attempts
    assert isinstance(exc_info.value.last_error, ConnectionResetError)
    assert exc_info.value.kind == "retries_exhausted"


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried(activities, tmp_path):
    activities.fail("translate", ValueError("unsupported language"))
    executor = _executor(activities, tmp_path)

    with pytest.raises(PermanentInputError) as exc_info:
        await executor.invoke_with_policy("run-1", TRANSLATE, REQUEST)

    assert activities.calls == ["translate"]
    assert "unsupported language" in exc_info.value.message
    assert executor.breakers.get("openai").failure_count == 0


@pytest.mark.asyncio
async def test_timeout_is_transient(activities, tmp_path):
    stage = TRANSLATE.with_policy(
        StagePolicy(timeout_seconds=0.05, max_attempts=2, backoff_base=0, backoff_cap=0, backoff_jitter=0)
    )
    activities.stall("translate", 1)
    executor = _executor(activities, tmp_path)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await executor.invoke_with_policy("run-1", stage, REQUEST)

    assert isinstance(exc_info.value.last_error, ActivityTimeoutError)
    assert len(activities.calls) == 2


@pytest.mark.asyncio
async def test_backoff_delays(activities, tmp_path, monkeypatch):
    stage = TRANSLATE.with_policy(
        StagePolicy(max_attempts=3, backoff_base=2, backoff_cap=3, backoff_jitter=0)
    )
    delays = []

    async def record(delay, cancel_token=None):
        delays.append(delay)

    monkeypatch.setattr("vidlingo.utils.retry.schedule_retry", record)
    activities.fail("translate", ConnectionResetError("reset"), ConnectionResetError("reset"))

    await _executor(activities, tmp_path).invoke_with_policy("run-1", stage, REQUEST)
    assert delays == [2, 3]


@pytest.mark.asyncio
async def test_open_breaker_fails_fast(activities, tmp_path):
    executor = _executor(activities, tmp_path, threshold=2)
    activities.fail("translate", *[ConnectionResetError("reset") for _ in range(3)])

    with pytest.raises(DependencyUnavailableError):
        await executor.invoke_with_policy("run-1", TRANSLATE, REQUEST)

    # two failures opened the circuit, the third attempt never reached the activity
    assert len(activities.calls) == 2
    assert executor.breakers.get("openai").state == CircuitState.OPEN

    with pytest.raises(DependencyUnavailableError):
        await executor.invoke_with_policy("run-2", TRANSLATE, REQUEST)
    assert len(activities.calls) == 2


@pytest.mark.asyncio
async def test_cancellation_aborts_in_flight_activity(activities, tmp_path):
    started = activities.stall("translate", 30)
    token = CancellationToken()
    executor = _executor(activities, tmp_path)
    stage = TRANSLATE.with_policy(StagePolicy(timeout_seconds=60))

    task = asyncio.create_task(executor.invoke_with_policy("run-1", stage, REQUEST, token))
    await asyncio.wait_for(started.wait(), 5)
    token.cancel("user asked")

    with pytest.raises(RunCancelledError) as exc_info:
        await asyncio.wait_for(task, 5)
    assert exc_info.value.message == "user asked"
    assert activities.calls == ["translate"]


@pytest.mark.asyncio
async def test_cancelled_token_prevents_invocation(activities, tmp_path):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(RunCancelledError):
        await _executor(activities, tmp_path).invoke_with_policy(
            "run-1", TRANSLATE, REQUEST, token
        )
    assert activities.calls == []


@pytest.mark.asyncio
async def test_cancelled_half_open_trial_frees_the_breaker(activities, tmp_path):
    clock = FakeClock()
    breakers = BreakerRegistry(BreakerConfig(failure_threshold=1, cooldown_seconds=30), clock=clock)
    executor = ActivityExecutor(activities, breakers=breakers, temp_dir=tmp_path / "tmp")
    single = TRANSLATE.with_policy(StagePolicy(timeout_seconds=60, max_attempts=1))

    activities.fail("translate", ConnectionResetError(errno.ECONNRESET, "reset"))
    with pytest.raises(RetriesExhaustedError):
        await executor.invoke_with_policy("run-1", single, REQUEST)
    breaker = breakers.get("openai")
    assert breaker.state == CircuitState.OPEN

    clock.now += 31
    started = activities.stall("translate", 30)
    task = asyncio.create_task(executor.invoke_with_policy("run-2", single, REQUEST))
    await asyncio.wait_for(started.wait(), 5)
    assert breaker.state == CircuitState.HALF_OPEN
    # worker shutdown cancels the task, not the run
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    activities.delays.clear()
    await executor.invoke_with_policy("run-3", single, REQUEST)
    assert breaker.state == CircuitState.CLOSED
