"""Durable execution of the stage sequence for a single run.

The orchestrator drives a run from its last committed checkpoint to a
terminal state. A stage's output is checkpointed before progress is
published, so a crash between the two only ever loses a progress update,
never a stage result.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from .contracts import Artifacts, MuxedVideo, RunResult, Subtitles, Summary, Transcription, Translation
from .errors import CheckpointConflictError, PipelineError, RunCancelledError
from .execute import ActivityExecutor
from .models import ProgressSnapshot, Run, RunError, RunStatus, utcnow
from .persistence import CheckpointRecord, RunRepository
from .progress import BaseProgressPublisher
from .stages import PIPELINE_STAGES, StageDefinition, cumulative_percent
from .utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Executes runs stage by stage with checkpoint/resume semantics."""

    def __init__(
        self,
        executor: ActivityExecutor,
        repository: RunRepository,
        publisher: BaseProgressPublisher,
        stages: Optional[List[StageDefinition]] = None,
        purge_checkpoints_on_completion: bool = False,
    ) -> None:
        self._executor = executor
        self._repository = repository
        self._publisher = publisher
        self.stages = list(stages or PIPELINE_STAGES)
        self._purge_on_completion = purge_checkpoints_on_completion

    async def execute(
        self, run: Run, cancel_token: Optional[CancellationToken] = None
    ) -> Run:
        """Advance ``run`` from its resume point until it is terminal."""
        if run.status.is_terminal:
            logger.info(f"Run {run.run_id} already {run.status.value}, nothing to do")
            return run

        checkpoints = await self._repository.get_checkpoints(run.run_id)
        try:
            results = self._hydrate(run.run_id, checkpoints)
        except (CheckpointConflictError, ValueError) as e:
            return await self._fail(run, e, stage=None)

        run.stage_results = {c.ordinal: c.payload for c in checkpoints}
        run.current_stage_index = len(checkpoints)
        run.status = RunStatus.RUNNING
        run.error = None
        run.result = None
        run.completed_at = None
        run.touch()
        await self._repository.save_run(run)
        await self._publish_start(run)
        if checkpoints:
            logger.info(
                f"Resuming run {run.run_id} at stage {run.current_stage_index} "
                f"({len(checkpoints)} checkpoints)"
            )

        for stage in self.stages[run.current_stage_index :]:
            if cancel_token is not None and cancel_token.cancelled:
                return await self._cancel(
                    run, RunCancelledError(cancel_token.reason or "Run cancelled"), stage
                )
            try:
                output = await self._run_stage(run, stage, results, cancel_token)
                await self._repository.put_checkpoint(
                    run.run_id,
                    stage.ordinal,
                    stage.name,
                    output.model_dump(mode="json"),
                )
            except RunCancelledError as e:
                return await self._cancel(run, e, stage)
            except Exception as e:
                logger.error(f"Run {run.run_id} failed at {stage.name}: {e}")
                return await self._fail(run, e, stage=stage.name)

            results[stage.ordinal] = output
            run.stage_results[stage.ordinal] = output.model_dump(mode="json")
            run.current_stage_index = stage.ordinal + 1
            run.touch()
            await self._repository.save_run(run)
            if run.current_stage_index < len(self.stages):
                await self._publish(
                    run,
                    stage_name=stage.name,
                    message=f"Completed: {stage.description}",
                    status="running",
                )

        return await self._complete(run, results)

    # ------------------------------------------------------------------
    async def _run_stage(
        self,
        run: Run,
        stage: StageDefinition,
        results: Dict[int, BaseModel],
        cancel_token: Optional[CancellationToken],
    ) -> BaseModel:
        request = stage.build_input(run.input, results)
        if request is None:
            if stage.skipped_output is None:
                raise ValueError(f"Stage {stage.name} produced no input")
            logger.info(f"Skipping {stage.name} for run {run.run_id}")
            return stage.skipped_output()

        await self._publish(
            run,
            stage_name=stage.name,
            message=stage.description,
            status="running",
            stage_index=stage.ordinal,
        )
        logger.info(f"Run {run.run_id}: starting {stage.name}")
        return await self._executor.invoke_with_policy(
            run.run_id, stage, request, cancel_token
        )

    def _hydrate(
        self, run_id: str, checkpoints: List[CheckpointRecord]
    ) -> Dict[int, BaseModel]:
        if len(checkpoints) > len(self.stages):
            raise CheckpointConflictError(run_id, len(self.stages), "too many checkpoints")
        results: Dict[int, BaseModel] = {}
        for expected, record in enumerate(checkpoints):
            if record.ordinal != expected:
                raise CheckpointConflictError(
                    run_id, expected, f"checkpoints are not contiguous (found {record.ordinal})"
                )
            stage = self.stages[expected]
            if record.stage_name != stage.name:
                raise CheckpointConflictError(
                    run_id, expected, f"expected {stage.name}, found {record.stage_name}"
                )
            results[expected] = stage.output_model.model_validate(record.payload)
        return results

    def _aggregate(self, run: Run, results: Dict[int, BaseModel]) -> RunResult:
        transcription: Transcription = results[1]
        translation: Translation = results[2]
        summary: Summary = results[3]
        subtitles: Subtitles = results[4]
        video: MuxedVideo = results[5]
        artifacts: Artifacts = results[6]

        subtitles_path = str(Path(artifacts.artifacts_dir) / "subtitles.srt")
        video_path = video.output_path
        for name in artifacts.files:
            if name.endswith("subtitles.srt"):
                subtitles_path = name
            elif Path(name).name.startswith("translated_video"):
                video_path = name

        elapsed = utcnow() - run.created_at
        return RunResult(
            subtitles_path=subtitles_path,
            transcription=transcription.text,
            translation=translation.translated_text,
            summary=summary.summary,
            key_points=summary.key_points,
            source_language=transcription.detected_language,
            target_language=run.input.target_language,
            output_video_path=video_path,
            artifacts_dir=artifacts.artifacts_dir,
            files=artifacts.files,
            processing_time_ms=int(elapsed.total_seconds() * 1000),
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    async def _complete(self, run: Run, results: Dict[int, BaseModel]) -> Run:
        run.result = self._aggregate(run, results)
        run.status = RunStatus.COMPLETED
        run.completed_at = utcnow()
        run.touch()
        await self._repository.save_run(run)
        await self._publish(
            run,
            stage_name="completed",
            message="Translation completed",
            status="completed",
            percent=100,
        )
        logger.info(f"Run {run.run_id} completed in {run.result.processing_time_ms}ms")
        if self._purge_on_completion:
            removed = await self._repository.purge_checkpoints(run.run_id)
            logger.debug(f"Purged {removed} checkpoints for run {run.run_id}")
        self._cleanup(run, keep=())
        return run

    async def _fail(
        self, run: Run, exc: BaseException, stage: Optional[str]
    ) -> Run:
        run.status = RunStatus.FAILED
        run.error = RunError.from_exception(exc, stage)
        return await self._finish_unsuccessfully(run, "Translation failed")

    async def _cancel(
        self, run: Run, exc: RunCancelledError, stage: StageDefinition
    ) -> Run:
        logger.info(f"Run {run.run_id} cancelled during {stage.name}")
        run.status = RunStatus.CANCELLED
        run.error = RunError.from_exception(exc, stage.name)
        return await self._finish_unsuccessfully(run, "Translation cancelled")

    async def _finish_unsuccessfully(self, run: Run, message: str) -> Run:
        run.completed_at = utcnow()
        run.touch()
        await self._repository.save_run(run)
        await self._publish(
            run,
            stage_name=run.error.stage or "pending",
            message=message,
            status=run.status.value.lower(),
            error=run.error,
        )
        self._cleanup(run, keep=_paths_in(run.stage_results.values()))
        return run

    def _cleanup(self, run: Run, keep: Iterable[str]) -> None:
        scope = self._executor.temp_scope(run.run_id)
        try:
            removed = scope.cleanup(keep=[p for p in keep if scope.owns(p)])
        except OSError as e:
            logger.warning(f"Failed to clean up temp files for run {run.run_id}: {e}")
            return
        if removed:
            logger.info(f"Removed {len(removed)} temp files for run {run.run_id}")

    # ------------------------------------------------------------------
    # Progress
    async def _publish_start(self, run: Run) -> None:
        snapshot = self._snapshot(
            run,
            stage_name=self._stage_name(run.current_stage_index),
            message="Resuming" if run.current_stage_index else "Starting",
            status="running",
        )
        try:
            previous = await self._publisher.query(run.run_id)
            if previous is not None and previous.is_terminal:
                await self._publisher.reset(snapshot)
            else:
                await self._publisher.update(snapshot)
        except Exception as e:
            logger.warning(f"Failed to publish progress for run {run.run_id}: {e}")

    async def _publish(
        self,
        run: Run,
        stage_name: str,
        message: str,
        status: str,
        stage_index: Optional[int] = None,
        percent: Optional[int] = None,
        error: Optional[RunError] = None,
    ) -> None:
        snapshot = self._snapshot(
            run, stage_name, message, status, stage_index, percent, error
        )
        try:
            await self._publisher.update(snapshot)
        except Exception as e:
            # progress is advisory; the run state lives in the repository
            logger.warning(f"Failed to publish progress for run {run.run_id}: {e}")

    def _snapshot(
        self,
        run: Run,
        stage_name: str,
        message: str,
        status: str,
        stage_index: Optional[int] = None,
        percent: Optional[int] = None,
        error: Optional[RunError] = None,
    ) -> ProgressSnapshot:
        if percent is None:
            percent = cumulative_percent(self.stages, run.current_stage_index)
            if status != "completed":
                percent = min(percent, 99)
        return ProgressSnapshot(
            run_id=run.run_id,
            current_stage_index=(
                run.current_stage_index if stage_index is None else stage_index
            ),
            total_stages=len(self.stages),
            stage_name=stage_name,
            message=message,
            percent_complete=percent,
            status=status,
            error=error,
        )

    def _stage_name(self, index: int) -> str:
        if index < len(self.stages):
            return self.stages[index].name
        return "completed"


def _paths_in(payloads: Iterable[Any]) -> List[str]:
    """Every string value in the given checkpoint payloads that names a file."""
    found: List[str] = []

    def walk(value: Any) -> None:
        if isinstance(value, dict):
            for v in value.values():
                walk(v)
        elif isinstance(value, list):
            for v in value:
                walk(v)
        elif isinstance(value, str) and ("/" in value or "\\" in value):
            found.append(value)

    for payload in payloads:
        walk(payload)
    return found
