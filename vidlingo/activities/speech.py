"""Speech-to-text through the OpenAI Whisper endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence

from openai import AsyncOpenAI

from ..contracts import Segment, TranscribeRequest, Transcription
from ..languages import iso639_1
from . import media
from .base import ActivityContext

logger = logging.getLogger(__name__)


@dataclass
class TranscriptPart:
    """Transcription of one audio chunk, timestamps relative to the chunk."""

    text: str
    language: Optional[str] = None
    segments: List[Segment] = field(default_factory=list)
    duration: Optional[float] = None


def merge_transcripts(
    parts: Sequence[TranscriptPart], fallback_language: Optional[str] = None
) -> Transcription:
    """Concatenate chunk transcripts, shifting segment times by chunk offsets.

    A chunk's length is its reported duration, else the end of its last
    segment.
    """
    offset = 0.0
    texts = []
    segments: List[Segment] = []
    language = None
    for part in parts:
        language = language or part.language
        if part.text.strip():
            texts.append(part.text.strip())
        for seg in part.segments:
            segments.append(
                Segment(start=seg.start + offset, end=seg.end + offset, text=seg.text)
            )
        if part.duration is not None:
            offset += part.duration
        elif part.segments:
            offset += part.segments[-1].end
    return Transcription(
        text=" ".join(texts),
        detected_language=language or fallback_language or "en",
        segments=segments,
    )


class WhisperTranscriber:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "whisper-1",
        max_upload_bytes: int = 24 * 1024 * 1024,
        chunk_seconds: int = 600,
    ) -> None:
        self._client = client
        self._model = model
        self._max_upload_bytes = max_upload_bytes
        self._chunk_seconds = chunk_seconds

    async def transcribe(
        self, ctx: ActivityContext, request: TranscribeRequest
    ) -> Transcription:
        audio = Path(request.audio_path)
        if not audio.is_file():
            raise FileNotFoundError(f"Audio file not found: {audio}")

        chunks = await self._chunks(ctx, audio)
        logger.info(f"Transcribing {audio} in {len(chunks)} chunk(s)")
        parts = []
        for index, chunk in enumerate(chunks):
            parts.append(await self._transcribe_file(ctx, chunk, request, index))
        return merge_transcripts(parts, fallback_language=request.source_language)

    async def _chunks(self, ctx: ActivityContext, audio: Path) -> List[Path]:
        if audio.stat().st_size <= self._max_upload_bytes:
            return [audio]
        pattern = ctx.temp_files.path("chunk", "")
        pattern = pattern.with_name(f"{pattern.name}-%03d{audio.suffix or '.mp3'}")
        await media.run_ffmpeg(
            media.split_audio_args(audio, pattern, self._chunk_seconds)
        )
        prefix = pattern.name.split("-%03d")[0]
        return sorted(pattern.parent.glob(f"{prefix}-*{audio.suffix or '.mp3'}"))

    async def _transcribe_file(
        self,
        ctx: ActivityContext,
        path: Path,
        request: TranscribeRequest,
        index: int,
    ) -> TranscriptPart:
        kwargs: dict[str, Any] = {}
        language = iso639_1(request.source_language)
        if language:
            kwargs["language"] = language
        with open(path, "rb") as f:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=f,
                response_format="verbose_json",
                timestamp_granularities=["segment"],
                extra_headers={"Idempotency-Key": f"{ctx.idempotency_key}-{index}"},
                **kwargs,
            )
        segments = [
            Segment(start=s.start, end=max(s.start, s.end), text=s.text)
            for s in (response.segments or [])
        ]
        return TranscriptPart(
            text=response.text,
            language=getattr(response, "language", None),
            segments=segments,
            duration=getattr(response, "duration", None),
        )
