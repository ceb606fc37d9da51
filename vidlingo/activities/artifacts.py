"""Writes the deliverables of a run to its output directory."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from ..contracts import Artifacts, PersistRequest
from ..models import utcnow

logger = logging.getLogger(__name__)


def write_artifacts(output_dir: str | Path, run_id: str, request: PersistRequest) -> Artifacts:
    """Write subtitles, texts, metadata and the optional video under ``<output_dir>/<run_id>``.

    Files are overwritten, so repeating the call for the same run yields the
    same directory.
    """
    target = Path(output_dir) / run_id
    target.mkdir(parents=True, exist_ok=True)

    files = []

    def write(name: str, content: str) -> None:
        path = target / name
        path.write_text(content, encoding="utf-8")
        files.append(str(path))

    write("subtitles.srt", request.srt_content)
    write("subtitles.vtt", request.vtt_content)
    write("transcription.txt", request.transcription)
    write("translation.txt", request.translation)

    video_path = None
    if request.output_video_path:
        source = Path(request.output_video_path)
        if not source.is_file():
            raise FileNotFoundError(f"Output video not found: {source}")
        suffix = ".mkv" if source.suffix.lower() == ".mkv" else ".mp4"
        video_path = target / f"translated_video{suffix}"
        shutil.copyfile(source, video_path)

    metadata = {
        "run_id": run_id,
        "media": request.media,
        "source_language": request.source_language,
        "target_language": request.target_language,
        "transcription": request.transcription,
        "translation": request.translation,
        "summary": request.summary,
        "key_points": request.key_points,
        "output_video_path": str(video_path) if video_path else None,
        "created_at": utcnow().isoformat(),
    }
    write("metadata.json", json.dumps(metadata, indent=2, ensure_ascii=False))
    if video_path:
        files.append(str(video_path))

    logger.info(f"Saved {len(files)} artifacts to {target}")
    return Artifacts(artifacts_dir=str(target), files=files)
