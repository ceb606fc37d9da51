"""Shared fixtures: scripted activities and orchestrator wiring."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from vidlingo.activities.artifacts import write_artifacts
from vidlingo.activities.base import ActivityContext
from vidlingo.activities import subtitles as srt
from vidlingo.breaker import BreakerRegistry
from vidlingo.config import BreakerConfig, StagePolicy
from vidlingo.contracts import (
    Artifacts,
    AudioExtraction,
    ExtractAudioRequest,
    MuxedVideo,
    MuxRequest,
    PersistRequest,
    Segment,
    SubtitleRequest,
    Subtitles,
    Summary,
    SummarizeRequest,
    TranscribeRequest,
    Transcription,
    TranslateRequest,
    Translation,
)
from vidlingo.execute import ActivityExecutor
from vidlingo.orchestrator import PipelineOrchestrator
from vidlingo.persistence import InMemoryRunRepository
from vidlingo.progress import InMemoryProgressPublisher
from vidlingo.registry import RunRegistry
from vidlingo.stages import build_stages

FAST_POLICY = StagePolicy(
    timeout_seconds=5, max_attempts=3, backoff_base=0, backoff_cap=0, backoff_jitter=0
)


class ScriptedActivities:
    """Deterministic activities that can be told to fail or stall."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.calls: List[str] = []
        self.contexts: List[ActivityContext] = []
        self.failures: Dict[str, List[BaseException]] = {}
        self.delays: Dict[str, float] = {}
        self.started: Dict[str, asyncio.Event] = {}

    def fail(self, activity: str, *errors: BaseException) -> None:
        self.failures.setdefault(activity, []).extend(errors)

    def stall(self, activity: str, seconds: float) -> asyncio.Event:
        self.delays[activity] = seconds
        event = asyncio.Event()
        self.started[activity] = event
        return event

    async def _enter(self, activity: str, ctx: ActivityContext) -> None:
        self.calls.append(activity)
        self.contexts.append(ctx)
        if activity in self.started:
            self.started[activity].set()
        if activity in self.delays:
            await asyncio.sleep(self.delays[activity])
        queue = self.failures.get(activity)
        if queue:
            raise queue.pop(0)

    async def extract_audio(
        self, ctx: ActivityContext, request: ExtractAudioRequest
    ) -> AudioExtraction:
        await self._enter("extract_audio", ctx)
        audio = ctx.temp_files.path("audio", ".mp3")
        audio.write_bytes(b"ID3")
        video = None
        if request.media_locator.endswith(".mp4"):
            video = ctx.temp_files.path("download", ".mp4")
            video.write_bytes(b"video")
        return AudioExtraction(
            audio_path=str(audio), original_media_path=str(video) if video else None
        )

    async def transcribe(
        self, ctx: ActivityContext, request: TranscribeRequest
    ) -> Transcription:
        await self._enter("transcribe", ctx)
        return Transcription(
            text="Hello world. This is a test.",
            detected_language="english",
            segments=[
                Segment(start=0.0, end=2.0, text="Hello world."),
                Segment(start=2.0, end=5.5, text="This is a test."),
            ],
        )

    async def translate(
        self, ctx: ActivityContext, request: TranslateRequest
    ) -> Translation:
        await self._enter("translate", ctx)
        return Translation(translated_text="Hola mundo. Esto es una prueba.")

    async def summarize(self, ctx: ActivityContext, request: SummarizeRequest) -> Summary:
        await self._enter("summarize", ctx)
        return Summary(
            summary="Un saludo de prueba.",
            key_points=["Saludo", "Prueba", "Mundo"],
        )

    async def generate_subtitles(
        self, ctx: ActivityContext, request: SubtitleRequest
    ) -> Subtitles:
        await self._enter("generate_subtitles", ctx)
        cues = srt.distribute_text(request.segments, request.translated_text)
        return Subtitles(
            srt_content=srt.to_srt(cues), vtt_content=srt.to_vtt(cues), segments=cues
        )

    async def mux_video(self, ctx: ActivityContext, request: MuxRequest) -> MuxedVideo:
        await self._enter("mux_video", ctx)
        output = ctx.temp_files.path("translated_video", ".mp4")
        output.write_bytes(b"muxed")
        return MuxedVideo(output_path=str(output))

    async def persist_artifacts(
        self, ctx: ActivityContext, request: PersistRequest
    ) -> Artifacts:
        await self._enter("persist_artifacts", ctx)
        return write_artifacts(self.root / "output", ctx.run_id, request)


@pytest.fixture
def activities(tmp_path) -> ScriptedActivities:
    return ScriptedActivities(tmp_path)


@pytest.fixture
def repository() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def publisher() -> InMemoryProgressPublisher:
    return InMemoryProgressPublisher()


@pytest.fixture
def make_orchestrator(tmp_path, activities, repository, publisher):
    def _make(
        repo=None,
        pub=None,
        policy: StagePolicy = FAST_POLICY,
        breaker: Optional[BreakerConfig] = None,
        purge: bool = False,
    ) -> PipelineOrchestrator:
        executor = ActivityExecutor(
            activities,
            breakers=BreakerRegistry(breaker or BreakerConfig(failure_threshold=50)),
            temp_dir=tmp_path / "tmp",
        )
        return PipelineOrchestrator(
            executor,
            repo or repository,
            pub or publisher,
            stages=build_stages(default=policy),
            purge_checkpoints_on_completion=purge,
        )

    return _make


@pytest.fixture
def make_registry(make_orchestrator, repository, publisher):
    def _make(repo=None, pub=None, **kwargs) -> RunRegistry:
        repo = repo or repository
        pub = pub or publisher
        max_concurrent = kwargs.pop("max_concurrent_runs", 4)
        return RunRegistry(
            make_orchestrator(repo=repo, pub=pub, **kwargs),
            repo,
            pub,
            max_concurrent_runs=max_concurrent,
        )

    return _make
