"""Typed contracts for run input and each pipeline stage."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OutputOptions(BaseModel):
    """What the run should produce besides text and subtitle artifacts."""

    model_config = ConfigDict(frozen=True)

    generate_video: bool = True
    burn_in_subtitles: bool = False


class RunInput(BaseModel):
    """Immutable job parameters, validated once when the run is started."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    media: str = Field(..., description="URL or local path of the source media")
    target_language: str
    source_language: Optional[str] = None
    file_name: Optional[str] = None
    output: OutputOptions = Field(default_factory=OutputOptions)

    @model_validator(mode="before")
    @classmethod
    def _accept_aliases(cls, data: Any) -> Any:
        # front ends send the original camelCase field names
        if isinstance(data, dict):
            data = dict(data)
            for alias, name in (
                ("videoUrl", "media"),
                ("targetLanguage", "target_language"),
                ("targetLang", "target_language"),
                ("sourceLanguage", "source_language"),
                ("fileName", "file_name"),
                ("outputOptions", "output"),
            ):
                if alias in data and name not in data:
                    data[name] = data.pop(alias)
            output = data.get("output")
            if isinstance(output, dict):
                output = dict(output)
                if "hardcodeSubtitles" in output:
                    output.setdefault("burn_in_subtitles", output.pop("hardcodeSubtitles"))
                if "generateVideo" in output:
                    output.setdefault("generate_video", output.pop("generateVideo"))
                data["output"] = output
        return data

    @field_validator("media", "target_language")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("source_language", "file_name")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @property
    def is_remote(self) -> bool:
        return self.media.startswith(("http://", "https://"))


class Segment(BaseModel):
    """A timed piece of transcript, in seconds from the start of the media."""

    start: float = Field(..., ge=0)
    end: float = Field(..., ge=0)
    text: str

    @model_validator(mode="after")
    def _ordered(self) -> "Segment":
        if self.end < self.start:
            raise ValueError("segment end precedes start")
        return self


# ----------------------------------------------------------------------
# Stage requests and responses


class ExtractAudioRequest(BaseModel):
    media_locator: str


class AudioExtraction(BaseModel):
    audio_path: str
    original_media_path: Optional[str] = None


class TranscribeRequest(BaseModel):
    audio_path: str
    source_language: Optional[str] = None


class Transcription(BaseModel):
    text: str
    detected_language: str
    segments: List[Segment] = Field(default_factory=list)


class TranslateRequest(BaseModel):
    text: str
    source_language: str
    target_language: str


class Translation(BaseModel):
    translated_text: str


class SummarizeRequest(BaseModel):
    translated_text: str
    target_language: str


class Summary(BaseModel):
    summary: str
    key_points: List[str] = Field(default_factory=list)


class SubtitleRequest(BaseModel):
    segments: List[Segment] = Field(default_factory=list)
    translated_text: str
    target_language: str


class Subtitles(BaseModel):
    srt_content: str
    vtt_content: str
    segments: List[Segment] = Field(default_factory=list)


class MuxRequest(BaseModel):
    media_path: str
    srt_content: str
    burn_in: bool = False
    target_language: Optional[str] = None


class MuxedVideo(BaseModel):
    output_path: Optional[str] = None
    skipped: bool = False


class PersistRequest(BaseModel):
    media: str
    transcription: str
    translation: str
    summary: str
    key_points: List[str] = Field(default_factory=list)
    srt_content: str
    vtt_content: str
    source_language: str
    target_language: str
    output_video_path: Optional[str] = None


class Artifacts(BaseModel):
    artifacts_dir: str
    files: List[str] = Field(default_factory=list)


class RunResult(BaseModel):
    """Aggregate output of a completed run."""

    subtitles_path: str
    transcription: str
    translation: str
    summary: str
    key_points: List[str] = Field(default_factory=list)
    source_language: str
    target_language: str
    output_video_path: Optional[str] = None
    artifacts_dir: str
    files: List[str] = Field(default_factory=list)
    processing_time_ms: int = 0
