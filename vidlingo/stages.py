"""The fixed, compiled-in stage sequence of the translation pipeline.

Each stage's input is a pure function of the run input and the typed outputs
of earlier stages, so a resumed run rebuilds exactly the same requests from
its checkpoints.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel

from .activities.base import ActivityContext, PipelineActivities
from .config import StagePolicy
from .contracts import (
    Artifacts,
    AudioExtraction,
    ExtractAudioRequest,
    MuxedVideo,
    MuxRequest,
    PersistRequest,
    RunInput,
    SubtitleRequest,
    Subtitles,
    Summary,
    SummarizeRequest,
    TranscribeRequest,
    Transcription,
    TranslateRequest,
    Translation,
)

StageResults = Mapping[int, BaseModel]
InputBuilder = Callable[[RunInput, StageResults], Optional[BaseModel]]
Invoker = Callable[[PipelineActivities, ActivityContext, Any], Awaitable[Any]]


@dataclass(frozen=True)
class StageDefinition:
    name: str
    ordinal: int
    description: str
    dependency: str
    output_model: Type[BaseModel]
    build_input: InputBuilder
    invoke: Invoker
    progress_weight: int
    timeout: float = 600.0
    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_cap: float = 60.0
    backoff_jitter: float = 0.5
    # payload checkpointed when ``build_input`` returns None
    skipped_output: Optional[Callable[[], BaseModel]] = None

    def with_policy(self, policy: StagePolicy) -> "StageDefinition":
        return replace(
            self,
            timeout=policy.timeout_seconds,
            max_attempts=policy.max_attempts,
            backoff_base=policy.backoff_base,
            backoff_cap=policy.backoff_cap,
            backoff_jitter=policy.backoff_jitter,
        )


def _extract_input(run_input: RunInput, results: StageResults) -> ExtractAudioRequest:
    return ExtractAudioRequest(media_locator=run_input.media)


def _transcribe_input(run_input: RunInput, results: StageResults) -> TranscribeRequest:
    audio: AudioExtraction = results[0]
    return TranscribeRequest(
        audio_path=audio.audio_path, source_language=run_input.source_language
    )


def _translate_input(run_input: RunInput, results: StageResults) -> TranslateRequest:
    transcription: Transcription = results[1]
    return TranslateRequest(
        text=transcription.text,
        source_language=transcription.detected_language,
        target_language=run_input.target_language,
    )


def _summarize_input(run_input: RunInput, results: StageResults) -> SummarizeRequest:
    translation: Translation = results[2]
    return SummarizeRequest(
        translated_text=translation.translated_text,
        target_language=run_input.target_language,
    )


def _subtitle_input(run_input: RunInput, results: StageResults) -> SubtitleRequest:
    transcription: Transcription = results[1]
    translation: Translation = results[2]
    return SubtitleRequest(
        segments=transcription.segments,
        translated_text=translation.translated_text,
        target_language=run_input.target_language,
    )


def _mux_input(run_input: RunInput, results: StageResults) -> Optional[MuxRequest]:
    audio: AudioExtraction = results[0]
    if not run_input.output.generate_video or not audio.original_media_path:
        return None
    subtitles: Subtitles = results[4]
    return MuxRequest(
        media_path=audio.original_media_path,
        srt_content=subtitles.srt_content,
        burn_in=run_input.output.burn_in_subtitles,
        target_language=run_input.target_language,
    )


def _persist_input(run_input: RunInput, results: StageResults) -> PersistRequest:
    transcription: Transcription = results[1]
    translation: Translation = results[2]
    summary: Summary = results[3]
    subtitles: Subtitles = results[4]
    video: MuxedVideo = results[5]
    return PersistRequest(
        media=run_input.media,
        transcription=transcription.text,
        translation=translation.translated_text,
        summary=summary.summary,
        key_points=summary.key_points,
        srt_content=subtitles.srt_content,
        vtt_content=subtitles.vtt_content,
        source_language=transcription.detected_language,
        target_language=run_input.target_language,
        output_video_path=video.output_path,
    )


PIPELINE_STAGES: List[StageDefinition] = [
    StageDefinition(
        name="extract_audio",
        ordinal=0,
        description="Extracting audio from video",
        dependency="ffmpeg",
        output_model=AudioExtraction,
        build_input=_extract_input,
        invoke=lambda a, ctx, req: a.extract_audio(ctx, req),
        progress_weight=10,
    ),
    StageDefinition(
        name="transcribe",
        ordinal=1,
        description="Transcribing audio",
        dependency="openai",
        output_model=Transcription,
        build_input=_transcribe_input,
        invoke=lambda a, ctx, req: a.transcribe(ctx, req),
        progress_weight=30,
    ),
    StageDefinition(
        name="translate",
        ordinal=2,
        description="Translating text",
        dependency="openai",
        output_model=Translation,
        build_input=_translate_input,
        invoke=lambda a, ctx, req: a.translate(ctx, req),
        progress_weight=20,
    ),
    StageDefinition(
        name="summarize",
        ordinal=3,
        description="Generating summary",
        dependency="openai",
        output_model=Summary,
        build_input=_summarize_input,
        invoke=lambda a, ctx, req: a.summarize(ctx, req),
        progress_weight=10,
    ),
    StageDefinition(
        name="generate_subtitles",
        ordinal=4,
        description="Generating subtitles",
        dependency="openai",
        output_model=Subtitles,
        build_input=_subtitle_input,
        invoke=lambda a, ctx, req: a.generate_subtitles(ctx, req),
        progress_weight=10,
    ),
    StageDefinition(
        name="mux_video",
        ordinal=5,
        description="Generating output video with subtitles",
        dependency="ffmpeg",
        output_model=MuxedVideo,
        build_input=_mux_input,
        invoke=lambda a, ctx, req: a.mux_video(ctx, req),
        progress_weight=15,
        skipped_output=lambda: MuxedVideo(output_path=None, skipped=True),
    ),
    StageDefinition(
        name="persist_artifacts",
        ordinal=6,
        description="Saving workflow artifacts",
        dependency="filesystem",
        output_model=Artifacts,
        build_input=_persist_input,
        invoke=lambda a, ctx, req: a.persist_artifacts(ctx, req),
        progress_weight=5,
    ),
]


def build_stages(
    policies: Optional[Dict[str, StagePolicy]] = None,
    default: Optional[StagePolicy] = None,
) -> List[StageDefinition]:
    """Return the stage sequence with configured policies applied.

    ``default`` applies to every stage; ``policies`` override per stage name.
    """
    policies = policies or {}
    unknown = set(policies) - {s.name for s in PIPELINE_STAGES}
    if unknown:
        raise ValueError(f"Unknown stage(s) in policy configuration: {sorted(unknown)}")
    stages = []
    for stage in PIPELINE_STAGES:
        if default is not None:
            stage = stage.with_policy(default)
        if stage.name in policies:
            stage = stage.with_policy(policies[stage.name])
        stages.append(stage)
    return stages


def cumulative_percent(stages: List[StageDefinition], completed: int) -> int:
    """Percent complete once the first ``completed`` stages are checkpointed."""
    total = sum(s.progress_weight for s in stages)
    if total <= 0 or completed <= 0:
        return 0
    done = sum(s.progress_weight for s in stages[:completed])
    return min(100, (100 * done) // total)
