"""Translation, summarisation and subtitle alignment with pydantic_ai agents."""

from __future__ import annotations

import json
import logging
from typing import List, cast

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from ..contracts import (
    Segment,
    SubtitleRequest,
    Subtitles,
    Summary,
    SummarizeRequest,
    TranslateRequest,
    Translation,
)
from . import subtitles as srt
from .base import ActivityContext

logger = logging.getLogger(__name__)

TRANSLATE_INSTRUCTIONS = (
    "You are a professional translator. Translate the user's text from "
    "{source} to {target}. Preserve the meaning, tone and style of the "
    "original text. Only output the translated text, nothing else."
)

SUMMARY_INSTRUCTIONS = (
    "You are a content summarizer. Create a concise summary of the user's "
    "content in {target}. Also extract 3 to 5 key points, written in {target}."
)

ALIGN_INSTRUCTIONS = (
    "You are a subtitle generator. Given the original segment timings and the "
    "full translated text, distribute the translated text across the segments "
    "keeping the original timing structure. Return exactly one segment per "
    "original segment, in the same order."
)


class SummaryOutput(BaseModel):
    summary: str
    key_points: List[str] = Field(min_length=3, max_length=5)


class AlignedSegments(BaseModel):
    segments: List[Segment]


class LanguageActivities:
    """Text stages backed by a chat model."""

    def __init__(
        self,
        model: Model | str,
        request_timeout: float = 300.0,
        align_with_model: bool = True,
    ) -> None:
        self._model = model
        self._timeout = request_timeout
        self._align_with_model = align_with_model

    def _settings(self, temperature: float) -> ModelSettings:
        return cast(
            ModelSettings, {"temperature": temperature, "timeout": self._timeout}
        )

    async def translate(
        self, ctx: ActivityContext, request: TranslateRequest
    ) -> Translation:
        logger.info(
            f"Translating from {request.source_language} to {request.target_language}"
        )
        if not request.text.strip():
            return Translation(translated_text="")
        agent = Agent(
            self._model,
            instructions=TRANSLATE_INSTRUCTIONS.format(
                source=request.source_language, target=request.target_language
            ),
        )
        result = await agent.run(request.text, model_settings=self._settings(0.3))
        return Translation(translated_text=str(result.output).strip())

    async def summarize(self, ctx: ActivityContext, request: SummarizeRequest) -> Summary:
        logger.info(f"Generating summary in {request.target_language}")
        agent = Agent(
            self._model,
            output_type=SummaryOutput,
            instructions=SUMMARY_INSTRUCTIONS.format(target=request.target_language),
        )
        result = await agent.run(
            request.translated_text, model_settings=self._settings(0.5)
        )
        return Summary(summary=result.output.summary, key_points=result.output.key_points)

    async def generate_subtitles(
        self, ctx: ActivityContext, request: SubtitleRequest
    ) -> Subtitles:
        original = request.segments
        cues: List[Segment] = []
        if original and request.translated_text.strip():
            if self._align_with_model:
                cues = srt.align_to_timings(original, await self._align(request))
            if not cues:
                cues = srt.distribute_text(original, request.translated_text)
        if original:
            cues = srt.clamp_segments(
                cues, start=original[0].start, end=max(s.end for s in original)
            )
        return Subtitles(
            srt_content=srt.to_srt(cues), vtt_content=srt.to_vtt(cues), segments=cues
        )

    async def _align(self, request: SubtitleRequest) -> List[Segment]:
        agent = Agent(
            self._model, output_type=AlignedSegments, instructions=ALIGN_INSTRUCTIONS
        )
        timings = json.dumps([s.model_dump() for s in request.segments], ensure_ascii=False)
        prompt = (
            f"Original segments with timings:\n{timings}\n\n"
            f"Full translated text:\n{request.translated_text}"
        )
        result = await agent.run(prompt, model_settings=self._settings(0.3))
        aligned = result.output.segments
        if len(aligned) != len(request.segments):
            logger.warning(
                f"Model returned {len(aligned)} cues for {len(request.segments)} "
                "segments, distributing proportionally instead"
            )
        return aligned
