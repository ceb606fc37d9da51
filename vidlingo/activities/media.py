"""FFmpeg invocation and media download helpers."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from ..errors import MediaProcessingError

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv")
AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".ogg", ".flac", ".aac")

FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")


def file_extension(locator: str) -> str:
    """Lower-cased extension of a URL path or filesystem path."""
    if locator.startswith(("http://", "https://")):
        locator = urlparse(locator).path
    return Path(locator).suffix.lower()


def is_video_file(locator: str) -> bool:
    return file_extension(locator) in VIDEO_EXTENSIONS


def is_audio_file(locator: str) -> bool:
    return file_extension(locator) in AUDIO_EXTENSIONS


async def download(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    headers: Optional[dict] = None,
) -> Path:
    """Stream ``url`` to ``destination``, following redirects.

    HTTP error statuses raise :class:`httpx.HTTPStatusError`; the partial file
    is removed on any failure.
    """
    logger.info(f"Downloading file from: {url}")
    try:
        async with client.stream(
            "GET", url, headers=headers, follow_redirects=True
        ) as response:
            response.raise_for_status()
            with open(destination, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    logger.info(f"Downloaded to: {destination}")
    return destination


async def run_ffmpeg(args: Sequence[str]) -> None:
    """Run ffmpeg with ``args``.

    The subprocess is killed if the calling task is cancelled or times out.
    A non-zero exit raises :class:`MediaProcessingError` carrying the tail of
    stderr.
    """
    command = [FFMPEG_BINARY, "-hide_banner", "-nostdin", *args]
    logger.debug(f"FFmpeg command: {' '.join(command)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise MediaProcessingError(f"ffmpeg executable not found: {FFMPEG_BINARY}") from e

    try:
        _, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        tail = stderr.decode(errors="replace").strip().splitlines()[-5:]
        raise MediaProcessingError(
            f"ffmpeg exited with code {process.returncode}: {' | '.join(tail)}",
            returncode=process.returncode,
        )


def extract_audio_args(source: Path, output: Path) -> List[str]:
    """MP3 at 192 kbit/s, stereo, 44.1 kHz, video dropped."""
    return [
        "-y",
        "-i", str(source),
        "-vn",
        "-acodec", "libmp3lame",
        "-b:a", "192k",
        "-ac", "2",
        "-ar", "44100",
        str(output),
    ]


def split_audio_args(source: Path, pattern: Path, chunk_seconds: int) -> List[str]:
    return [
        "-y",
        "-i", str(source),
        "-f", "segment",
        "-segment_time", str(chunk_seconds),
        "-reset_timestamps", "1",
        "-c", "copy",
        str(pattern),
    ]


def escape_filter_path(path: Path) -> str:
    """Escape a path for use inside an ffmpeg filter argument."""
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def burn_in_args(video: Path, srt: Path, output: Path) -> List[str]:
    return [
        "-y",
        "-i", str(video),
        "-vf", f"subtitles='{escape_filter_path(srt)}'",
        "-c:a", "copy",
        str(output),
    ]


def soft_subtitle_args(video: Path, srt: Path, output: Path, language: str) -> List[str]:
    """Add the SRT as a selectable track: ``srt`` in MKV, ``mov_text`` otherwise."""
    codec = "srt" if output.suffix.lower() == ".mkv" else "mov_text"
    return [
        "-y",
        "-i", str(video),
        "-i", str(srt),
        "-map", "0:v",
        "-map", "0:a?",
        "-map", "1:0",
        "-c:v", "copy",
        "-c:a", "copy",
        "-c:s", codec,
        "-metadata:s:s:0", f"language={language}",
        str(output),
    ]
