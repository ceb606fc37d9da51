"""End-to-end orchestrator behaviour over scripted activities."""

import errno
from pathlib import Path

import pytest

from vidlingo.contracts import OutputOptions, RunInput
from vidlingo.errors import CheckpointConflictError
from vidlingo.config import BreakerConfig
from vidlingo.models import Run, RunStatus
from vidlingo.persistence import InMemoryRunRepository
from vidlingo.progress import InMemoryProgressPublisher

ALL_STAGES = [
    "extract_audio",
    "transcribe",
    "translate",
    "summarize",
    "generate_subtitles",
    "mux_video",
    "persist_artifacts",
]


class RecordingPublisher(InMemoryProgressPublisher):
    def __init__(self) -> None:
        super().__init__()
        self.history = []

    async def update(self, snapshot):
        stored = await super().update(snapshot)
        self.history.append(stored)
        return stored


class UnreachablePublisher(InMemoryProgressPublisher):
    """Behaves like a progress backend that is down."""

    async def query(self, run_id):
        raise ConnectionError("progress backend unreachable")

    async def update(self, snapshot):
        raise ConnectionError("progress backend unreachable")

    async def reset(self, snapshot):
        raise ConnectionError("progress backend unreachable")


class RacingRepository(InMemoryRunRepository):
    """Another writer commits a different transcription just before we do."""

    async def put_checkpoint(self, run_id, ordinal, stage_name, payload):
        if ordinal == 1:
            await super().put_checkpoint(
                run_id, ordinal, stage_name, {**payload, "text": "something else"}
            )
        return await super().put_checkpoint(run_id, ordinal, stage_name, payload)


def _run(media: str = "https://cdn.example.com/talk.mp4", **output) -> Run:
    return Run(
        run_id="talk-spanish-1",
        input=RunInput(
            media=media, target_language="Spanish", output=OutputOptions(**output)
        ),
    )


async def _execute(orchestrator, repository, run: Run) -> Run:
    await repository.create_run(run)
    return await orchestrator.execute(run)


@pytest.mark.asyncio
async def test_full_success(make_orchestrator, activities, repository, tmp_path):
    publisher = RecordingPublisher()
    orchestrator = make_orchestrator(pub=publisher)

    run = await _execute(orchestrator, repository, _run())

    assert run.status == RunStatus.COMPLETED
    assert activities.calls == ALL_STAGES
    assert run.error is None
    result = run.result
    assert result.translation == "Hola mundo. Esto es una prueba."
    assert result.key_points == ["Saludo", "Prueba", "Mundo"]
    assert result.source_language == "english"
    assert result.target_language == "Spanish"
    assert Path(result.subtitles_path).name == "subtitles.srt"
    assert Path(result.output_video_path).name == "translated_video.mp4"
    assert Path(result.output_video_path).read_bytes() == b"muxed"

    stored = await repository.get_run(run.run_id)
    assert stored.status == RunStatus.COMPLETED
    assert len(await repository.get_checkpoints(run.run_id)) == 7

    final = await publisher.query(run.run_id)
    assert final.status == "completed"
    assert final.percent_complete == 100
    percents = [s.percent_complete for s in publisher.history]
    assert percents == sorted(percents)
    assert all(s.percent_complete < 100 for s in publisher.history[:-1])
    versions = [s.version for s in publisher.history]
    assert versions == list(range(1, len(versions) + 1))

    # temp files are gone once the run completed
    assert not (tmp_path / "tmp" / run.run_id).exists()


@pytest.mark.asyncio
async def test_transient_failures_then_success(make_orchestrator, activities, repository, monkeypatch):
    delays = []

    async def record(delay, cancel_token=None):
        delays.append(delay)

    monkeypatch.setattr("vidlingo.utils.retry.schedule_retry", record)
    activities.fail(
        "transcribe",
        ConnectionResetError(errno.ECONNRESET, "reset"),
        ConnectionResetError(errno.ECONNRESET, "reset"),
    )

    run = await _execute(make_orchestrator(), repository, _run())

    assert run.status == RunStatus.COMPLETED
    assert activities.calls.count("transcribe") == 3
    assert len(delays) == 2
    keys = {c.idempotency_key for c in activities.contexts if c.stage == "transcribe"}
    assert len(keys) == 1


@pytest.mark.asyncio
async def test_permanent_failure_stops_the_run(make_orchestrator, activities, repository, tmp_path):
    activities.fail("translate", ValueError("unsupported language pair"))
    publisher = RecordingPublisher()

    run = await _execute(make_orchestrator(pub=publisher), repository, _run())

    assert run.status == RunStatus.FAILED
    assert run.error.kind == "permanent_input"
    assert run.error.stage == "translate"
    assert "unsupported language pair" in run.error.message
    assert activities.calls == ["extract_audio", "transcribe", "translate"]
    assert run.result is None
    assert run.current_stage_index == 2

    snapshot = await publisher.query(run.run_id)
    assert snapshot.status == "failed"
    assert snapshot.error.kind == "permanent_input"
    assert snapshot.percent_complete < 100

    # checkpointed audio survives for a later resume
    audio = (await repository.get_checkpoints(run.run_id))[0].payload["audio_path"]
    assert Path(audio).exists()


@pytest.mark.asyncio
async def test_resume_skips_committed_stages(make_orchestrator, activities, repository):
    activities.fail("summarize", ValueError("model refused"))
    orchestrator = make_orchestrator()
    failed = await _execute(orchestrator, repository, _run())
    assert failed.status == RunStatus.FAILED
    assert failed.current_stage_index == 3

    activities.calls.clear()
    failed.status = RunStatus.PENDING
    resumed = await orchestrator.execute(failed)

    assert resumed.status == RunStatus.COMPLETED
    assert activities.calls == ALL_STAGES[3:]
    assert resumed.error is None
    assert sorted(resumed.stage_results) == list(range(7))


@pytest.mark.asyncio
async def test_reexecuting_completed_run_is_a_no_op(make_orchestrator, activities, repository):
    orchestrator = make_orchestrator()
    run = await _execute(orchestrator, repository, _run())
    activities.calls.clear()

    again = await orchestrator.execute(run)
    assert again.status == RunStatus.COMPLETED
    assert activities.calls == []


@pytest.mark.asyncio
async def test_mux_is_skipped_without_video_output(make_orchestrator, activities, repository):
    run = await _execute(make_orchestrator(), repository, _run(generate_video=False))

    assert run.status == RunStatus.COMPLETED
    assert "mux_video" not in activities.calls
    checkpoints = await repository.get_checkpoints(run.run_id)
    assert checkpoints[5].stage_name == "mux_video"
    assert checkpoints[5].payload == {"output_path": None, "skipped": True}
    assert run.result.output_video_path is None


@pytest.mark.asyncio
async def test_mux_is_skipped_for_audio_only_input(make_orchestrator, activities, repository):
    run = await _execute(
        make_orchestrator(), repository, _run(media="https://cdn.example.com/episode.mp3")
    )
    assert run.status == RunStatus.COMPLETED
    assert "mux_video" not in activities.calls


@pytest.mark.asyncio
async def test_checkpoint_gap_fails_the_run(make_orchestrator, activities, repository):
    run = _run()
    await repository.create_run(run)
    await repository.put_checkpoint(run.run_id, 0, "extract_audio", {"audio_path": "/tmp/a.mp3"})
    await repository.put_checkpoint(run.run_id, 2, "translate", {"translated_text": "hola"})

    result = await make_orchestrator().execute(run)

    assert result.status == RunStatus.FAILED
    assert result.error.kind == CheckpointConflictError.kind
    assert activities.calls == []


@pytest.mark.asyncio
async def test_purge_checkpoints_on_completion(make_orchestrator, repository):
    run = await _execute(make_orchestrator(purge=True), repository, _run())
    assert run.status == RunStatus.COMPLETED
    assert await repository.get_checkpoints(run.run_id) == []


@pytest.mark.asyncio
async def test_transient_failures_exhaust_attempts(make_orchestrator, activities, repository, publisher):
    activities.fail(
        "transcribe",
        *[ConnectionResetError(errno.ECONNRESET, "reset") for _ in range(3)],
    )

    run = await _execute(make_orchestrator(), repository, _run())

    assert run.status == RunStatus.FAILED
    assert run.error.kind == "retries_exhausted"
    assert run.error.stage == "transcribe"
    assert activities.calls == ["extract_audio"] + ["transcribe"] * 3
    snapshot = await publisher.query(run.run_id)
    assert snapshot.status == "failed"
    assert snapshot.error.kind == "retries_exhausted"


@pytest.mark.asyncio
async def test_open_circuit_fails_run_as_dependency_unavailable(
    make_orchestrator, activities, repository, publisher
):
    activities.fail("translate", ConnectionResetError(errno.ECONNRESET, "reset"))
    orchestrator = make_orchestrator(
        breaker=BreakerConfig(failure_threshold=1, cooldown_seconds=60)
    )

    run = await _execute(orchestrator, repository, _run())

    assert run.status == RunStatus.FAILED
    assert run.error.kind == "dependency_unavailable"
    assert run.error.stage == "translate"
    # the second attempt fails fast without calling the activity
    assert activities.calls.count("translate") == 1
    snapshot = await publisher.query(run.run_id)
    assert snapshot.error.kind == "dependency_unavailable"


@pytest.mark.asyncio
async def test_conflicting_checkpoint_fails_run(make_orchestrator, activities):
    repository = RacingRepository()

    run = await _execute(make_orchestrator(repo=repository), repository, _run())

    assert run.status == RunStatus.FAILED
    assert run.error.kind == "checkpoint_conflict"
    assert run.error.stage == "transcribe"
    assert activities.calls == ["extract_audio", "transcribe"]
    assert run.current_stage_index == 1


@pytest.mark.asyncio
async def test_unreachable_progress_backend_does_not_stop_the_run(
    make_orchestrator, activities, repository
):
    orchestrator = make_orchestrator(pub=UnreachablePublisher())

    run = await _execute(orchestrator, repository, _run())

    assert run.status == RunStatus.COMPLETED
    assert activities.calls == ALL_STAGES
    assert (await repository.get_run(run.run_id)).status == RunStatus.COMPLETED
