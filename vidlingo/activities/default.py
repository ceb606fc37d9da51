"""Production activities: FFmpeg, Whisper and chat models over OpenAI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx
from openai import AsyncOpenAI
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from ..config import VidlingoConfig
from ..contracts import (
    Artifacts,
    AudioExtraction,
    ExtractAudioRequest,
    MuxedVideo,
    MuxRequest,
    PersistRequest,
    SubtitleRequest,
    Subtitles,
    Summary,
    SummarizeRequest,
    TranscribeRequest,
    Transcription,
    TranslateRequest,
    Translation,
)
from ..errors import MediaProcessingError
from ..languages import iso639_2
from . import media
from .artifacts import write_artifacts
from .base import ActivityContext
from .language import LanguageActivities
from .speech import WhisperTranscriber

logger = logging.getLogger(__name__)


class DefaultActivities:
    """Implements every pipeline activity against real dependencies.

    Clients are created on first use so that constructing the object never
    needs credentials or network access.
    """

    def __init__(self, config: Optional[VidlingoConfig] = None) -> None:
        self.config = config or VidlingoConfig()
        self._http: Optional[httpx.AsyncClient] = None
        self._openai: Optional[AsyncOpenAI] = None
        self._language: Optional[LanguageActivities] = None
        self._transcriber: Optional[WhisperTranscriber] = None

    # ------------------------------------------------------------------
    # Clients
    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.openai.request_timeout_seconds)
            )
        return self._http

    @property
    def openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            settings = self.config.openai
            # retries belong to the stage policy, not the SDK
            self._openai = AsyncOpenAI(
                api_key=settings.api_key,
                base_url=settings.base_url,
                timeout=settings.request_timeout_seconds,
                max_retries=0,
                http_client=self.http,
            )
        return self._openai

    @property
    def language(self) -> LanguageActivities:
        if self._language is None:
            model = OpenAIChatModel(
                self.config.openai.model,
                provider=OpenAIProvider(openai_client=self.openai_client),
            )
            self._language = LanguageActivities(
                model,
                request_timeout=self.config.openai.request_timeout_seconds,
                align_with_model=self.config.openai.align_subtitles_with_model,
            )
        return self._language

    @property
    def transcriber(self) -> WhisperTranscriber:
        if self._transcriber is None:
            settings = self.config.openai
            self._transcriber = WhisperTranscriber(
                self.openai_client,
                model=settings.transcription_model,
                max_upload_bytes=settings.max_upload_bytes,
                chunk_seconds=settings.chunk_seconds,
            )
        return self._transcriber

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            self._openai = None
            self._language = None
            self._transcriber = None

    # ------------------------------------------------------------------
    # Activities
    async def extract_audio(
        self, ctx: ActivityContext, request: ExtractAudioRequest
    ) -> AudioExtraction:
        locator = request.media_locator
        extension = media.file_extension(locator)
        logger.info(f"Extracting audio from: {locator}")

        if locator.startswith(("http://", "https://")):
            local = ctx.temp_files.path("download", extension or ".mp4")
            await media.download(
                self.http, locator, local, headers={"Idempotency-Key": ctx.idempotency_key}
            )
        else:
            local = Path(locator).expanduser()
            if not local.is_file():
                raise FileNotFoundError(f"Media file not found: {local}")

        if media.is_audio_file(locator):
            return AudioExtraction(audio_path=str(local))

        audio = ctx.temp_files.path("audio", ".mp3")
        if media.is_video_file(locator):
            await media.run_ffmpeg(media.extract_audio_args(local, audio))
            return AudioExtraction(audio_path=str(audio), original_media_path=str(local))

        logger.info(f"Unknown format ({extension or 'none'}), attempting audio extraction")
        try:
            await media.run_ffmpeg(media.extract_audio_args(local, audio))
        except MediaProcessingError as e:
            logger.info(f"Audio extraction failed, using original file: {e}")
            audio.unlink(missing_ok=True)
            return AudioExtraction(audio_path=str(local))
        return AudioExtraction(audio_path=str(audio), original_media_path=str(local))

    async def transcribe(
        self, ctx: ActivityContext, request: TranscribeRequest
    ) -> Transcription:
        return await self.transcriber.transcribe(ctx, request)

    async def translate(
        self, ctx: ActivityContext, request: TranslateRequest
    ) -> Translation:
        return await self.language.translate(ctx, request)

    async def summarize(self, ctx: ActivityContext, request: SummarizeRequest) -> Summary:
        return await self.language.summarize(ctx, request)

    async def generate_subtitles(
        self, ctx: ActivityContext, request: SubtitleRequest
    ) -> Subtitles:
        return await self.language.generate_subtitles(ctx, request)

    async def mux_video(self, ctx: ActivityContext, request: MuxRequest) -> MuxedVideo:
        video = Path(request.media_path)
        if not video.is_file():
            raise FileNotFoundError(f"Video file not found: {video}")
        srt_path = ctx.temp_files.path("subtitles", ".srt")
        srt_path.write_text(request.srt_content, encoding="utf-8")

        if request.burn_in:
            output = ctx.temp_files.path("translated_video", ".mp4")
            args = media.burn_in_args(video, srt_path, output)
        else:
            suffix = ".mkv" if video.suffix.lower() == ".mkv" else ".mp4"
            output = ctx.temp_files.path("translated_video", suffix)
            args = media.soft_subtitle_args(
                video, srt_path, output, iso639_2(request.target_language)
            )
        logger.info(f"Generating output video with subtitles: {output}")
        await media.run_ffmpeg(args)
        return MuxedVideo(output_path=str(output))

    async def persist_artifacts(
        self, ctx: ActivityContext, request: PersistRequest
    ) -> Artifacts:
        return write_artifacts(self.config.paths.output_dir, ctx.run_id, request)
