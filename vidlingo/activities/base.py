"""Activity protocol and the per-invocation context handed to activities."""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Protocol, runtime_checkable

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
from ..utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class TempFileScope:
    """Temporary files owned by a single run.

    Files live under ``<temp_dir>/<run_id>`` so the scope can be rebuilt after
    a process restart and cleaned up once the run reaches a terminal state.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path(self, prefix: str, suffix: str = "") -> Path:
        """Return a fresh path inside the scope, creating the directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root / f"{prefix}-{uuid.uuid4()}{suffix}"

    def owns(self, path: str | Path) -> bool:
        try:
            Path(path).resolve().relative_to(self.root.resolve())
        except ValueError:
            return False
        return True

    def files(self) -> list[Path]:
        if not self.root.exists():
            return []
        return sorted(p for p in self.root.rglob("*") if p.is_file())

    def cleanup(self, keep: Iterable[str] = ()) -> list[Path]:
        """Remove scoped files, except those listed in ``keep``.

        Returns the removed paths. With nothing to keep the whole directory
        goes away.
        """
        keep_resolved = {Path(p).resolve() for p in keep if p}
        if not keep_resolved:
            removed = self.files()
            if self.root.exists():
                shutil.rmtree(self.root)
            for path in removed:
                logger.debug(f"Cleaned up: {path}")
            return removed

        removed = []
        for path in self.files():
            if path.resolve() in keep_resolved:
                continue
            path.unlink()
            removed.append(path)
            logger.debug(f"Cleaned up: {path}")
        return removed


@dataclass
class ActivityContext:
    """Everything an activity may know about the invocation it serves."""

    run_id: str
    stage: str
    ordinal: int
    attempt: int
    idempotency_key: str
    temp_files: TempFileScope
    cancel_token: Optional[CancellationToken] = None
    extra: dict = field(default_factory=dict)


@runtime_checkable
class PipelineActivities(Protocol):
    """External operations the pipeline stages delegate to."""

    async def extract_audio(
        self, ctx: ActivityContext, request: ExtractAudioRequest
    ) -> AudioExtraction: ...

    async def transcribe(
        self, ctx: ActivityContext, request: TranscribeRequest
    ) -> Transcription: ...

    async def translate(
        self, ctx: ActivityContext, request: TranslateRequest
    ) -> Translation: ...

    async def summarize(
        self, ctx: ActivityContext, request: SummarizeRequest
    ) -> Summary: ...

    async def generate_subtitles(
        self, ctx: ActivityContext, request: SubtitleRequest
    ) -> Subtitles: ...

    async def mux_video(self, ctx: ActivityContext, request: MuxRequest) -> MuxedVideo: ...

    async def persist_artifacts(
        self, ctx: ActivityContext, request: PersistRequest
    ) -> Artifacts: ...
