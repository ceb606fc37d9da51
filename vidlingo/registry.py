"""Run registry: the boundary front ends use to start and observe runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import ValidationError

from .breaker import BreakerRegistry
from .config import VidlingoConfig, load_config
from .contracts import RunInput
from .errors import NotFoundError, PermanentInputError
from .execute import ActivityExecutor
from .models import ProgressSnapshot, Run, RunDescription, RunError, RunStatus, utcnow
from .orchestrator import PipelineOrchestrator
from .persistence import RunRepository, get_repository
from .progress import BaseProgressPublisher, get_progress_publisher
from .stages import build_stages, cumulative_percent
from .utils.cancellation import CancellationToken
from .utils.ids import new_run_id

logger = logging.getLogger(__name__)


class RunRegistry:
    """Starts runs on a bounded worker pool and answers queries about them."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        repository: RunRepository,
        publisher: BaseProgressPublisher,
        max_concurrent_runs: int = 4,
        resume_failed_runs: bool = True,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self._publisher = publisher
        self._semaphore = asyncio.Semaphore(max_concurrent_runs)
        self._resume_failed_runs = resume_failed_runs
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._active: Set[str] = set()

    @classmethod
    def from_config(
        cls,
        config: Optional[VidlingoConfig] = None,
        activities: Any = None,
        repository: Optional[RunRepository] = None,
        publisher: Optional[BaseProgressPublisher] = None,
    ) -> "RunRegistry":
        """Wire a registry from configuration, defaulting every collaborator."""
        config = config or load_config()
        if activities is None:
            from .activities.default import DefaultActivities

            activities = DefaultActivities(config)
        executor = ActivityExecutor(
            activities,
            breakers=BreakerRegistry(config.breaker),
            temp_dir=config.paths.temp_dir,
        )
        repository = repository or get_repository(config=config)
        publisher = publisher or get_progress_publisher(config=config)
        orchestrator = PipelineOrchestrator(
            executor,
            repository,
            publisher,
            stages=build_stages(config.stages),
            purge_checkpoints_on_completion=config.purge_checkpoints_on_completion,
        )
        return cls(
            orchestrator,
            repository,
            publisher,
            max_concurrent_runs=config.workers.max_concurrent_runs,
            resume_failed_runs=config.resume_failed_runs,
        )

    @property
    def repository(self) -> RunRepository:
        return self._repository

    # ------------------------------------------------------------------
    async def start(self, request: RunInput | Mapping[str, Any]) -> str:
        """Validate ``request``, create a run and schedule it. Returns the run id."""
        if not isinstance(request, RunInput):
            try:
                request = RunInput.model_validate(dict(request))
            except ValidationError as e:
                raise PermanentInputError(f"Invalid run input: {e}") from e

        run = Run(
            run_id=new_run_id(request.media, request.target_language, request.file_name),
            input=request,
        )
        await self._repository.create_run(run)
        await self._publish(
            ProgressSnapshot(
                run_id=run.run_id,
                total_stages=len(self._orchestrator.stages),
                message="Queued",
            )
        )
        logger.info(f"Started run {run.run_id} for {request.media}")
        self._schedule(run.run_id)
        return run.run_id

    async def describe(self, run_id: str) -> RunDescription:
        return RunDescription.from_run(await self._get(run_id))

    async def query_progress(self, run_id: str) -> ProgressSnapshot:
        snapshot = await self._publisher.query(run_id)
        if snapshot is not None:
            return snapshot
        # nothing published in this process, e.g. after a restart
        return self._derive_snapshot(await self._get(run_id))

    async def cancel(self, run_id: str) -> bool:
        """Request cancellation. Returns ``False`` if the run is already terminal."""
        run = await self._get(run_id)
        if run.status.is_terminal:
            return False

        token = self._tokens.get(run_id)
        if token is not None:
            token.cancel("Cancelled by request")
        task = self._tasks.get(run_id)
        if task is not None and run_id in self._active:
            logger.info(f"Cancellation requested for running run {run_id}")
            return True
        if task is not None:
            # still queued behind the worker pool
            task.cancel()

        run = await self._get(run_id)
        if run.status.is_terminal:
            return False
        run.status = RunStatus.CANCELLED
        run.error = RunError(
            kind="cancelled", message="Cancelled before execution", stage=None
        )
        run.completed_at = utcnow()
        run.touch()
        await self._repository.save_run(run)
        await self._publish(
            self._derive_snapshot(run).model_copy(update={"message": "Translation cancelled"})
        )
        logger.info(f"Cancelled queued run {run_id}")
        return True

    async def resume(self, run_id: str) -> str:
        """Restart a failed, cancelled or interrupted run under the same id."""
        run = await self._get(run_id)
        if run_id in self._tasks or run.status == RunStatus.COMPLETED:
            return run_id
        if run.status in (RunStatus.FAILED, RunStatus.CANCELLED):
            if not self._resume_failed_runs:
                raise PermanentInputError(
                    f"Run {run_id} is {run.status.value} and resuming failed runs is disabled"
                )
            run.status = RunStatus.PENDING
            run.error = None
            run.completed_at = None
            run.touch()
            await self._repository.save_run(run)
        logger.info(f"Resuming run {run_id} from stage {run.current_stage_index}")
        self._schedule(run_id)
        return run_id

    async def recover(self) -> List[str]:
        """Reschedule every run left pending or running by a previous process."""
        recovered = []
        for status in (RunStatus.RUNNING, RunStatus.PENDING):
            for run in await self._repository.list_runs(status):
                if run.run_id in self._tasks:
                    continue
                self._schedule(run.run_id)
                recovered.append(run.run_id)
        if recovered:
            logger.info(f"Recovered {len(recovered)} interrupted runs")
        return recovered

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> Run:
        """Wait for the run's current execution to finish and return its state."""
        task = self._tasks.get(run_id)
        if task is not None:
            # asyncio.wait neither cancels the task nor re-raises its outcome
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise asyncio.TimeoutError(f"Run {run_id} still in progress")
        return await self._get(run_id)

    async def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool.

        With ``wait`` the in-flight runs finish first; otherwise their tasks
        are cancelled and the runs stay ``RUNNING`` for :meth:`recover`.
        """
        tasks = list(self._tasks.values())
        if not wait:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._publisher.disconnect()

    # ------------------------------------------------------------------
    def _schedule(self, run_id: str) -> None:
        token = CancellationToken()
        self._tokens[run_id] = token
        task = asyncio.create_task(self._worker(run_id, token), name=f"run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _: self._forget(run_id, task))

    def _forget(self, run_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(run_id) is task:
            self._tasks.pop(run_id, None)
            self._tokens.pop(run_id, None)

    async def _worker(self, run_id: str, token: CancellationToken) -> None:
        async with self._semaphore:
            self._active.add(run_id)
            try:
                run = await self._repository.get_run(run_id)
                if run is None or run.status.is_terminal:
                    return
                run = await self._orchestrator.execute(run, token)
                logger.info(f"Run {run_id} finished with status {run.status.value}")
            except asyncio.CancelledError:
                logger.info(f"Worker for run {run_id} stopped")
                raise
            except Exception:
                logger.exception(f"Run {run_id} crashed; it can be recovered later")
            finally:
                self._active.discard(run_id)

    async def _publish(self, snapshot: ProgressSnapshot) -> None:
        try:
            await self._publisher.update(snapshot)
        except Exception as e:
            logger.warning(f"Failed to publish progress for run {snapshot.run_id}: {e}")

    async def _get(self, run_id: str) -> Run:
        run = await self._repository.get_run(run_id)
        if run is None:
            raise NotFoundError(run_id)
        return run

    def _derive_snapshot(self, run: Run) -> ProgressSnapshot:
        stages = self._orchestrator.stages
        if run.status == RunStatus.COMPLETED:
            percent = 100
        else:
            percent = min(99, cumulative_percent(stages, run.current_stage_index))
        index = run.current_stage_index
        return ProgressSnapshot(
            run_id=run.run_id,
            current_stage_index=index,
            total_stages=len(stages),
            stage_name=stages[index].name if index < len(stages) else "completed",
            message=run.status.value.lower(),
            percent_complete=percent,
            status=run.status.value.lower(),
            error=run.error,
        )
