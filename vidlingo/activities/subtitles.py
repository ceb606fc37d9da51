"""SRT and WebVTT rendering plus translated-text alignment."""

from __future__ import annotations

import math
import re
from typing import List, Literal, Optional, Sequence

from ..contracts import Segment

_WORDS = re.compile(r"\S+")


def format_timestamp(seconds: float, fmt: Literal["srt", "vtt"] = "srt") -> str:
    """Render ``seconds`` as ``HH:MM:SS,mmm`` (SRT) or ``HH:MM:SS.mmm`` (VTT)."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    sep = "," if fmt == "srt" else "."
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{sep}{ms:03d}"


def to_srt(segments: Sequence[Segment]) -> str:
    cues = []
    for index, seg in enumerate(segments, start=1):
        cues.append(
            f"{index}\n"
            f"{format_timestamp(seg.start, 'srt')} --> {format_timestamp(seg.end, 'srt')}\n"
            f"{seg.text.strip()}\n"
        )
    return "\n".join(cues)


def to_vtt(segments: Sequence[Segment]) -> str:
    cues = [
        f"{format_timestamp(seg.start, 'vtt')} --> {format_timestamp(seg.end, 'vtt')}\n"
        f"{seg.text.strip()}\n"
        for seg in segments
    ]
    return "WEBVTT\n\n" + "\n".join(cues)


def clamp_segments(
    segments: Sequence[Segment], start: float, end: float
) -> List[Segment]:
    """Clamp cues into ``[start, end]`` and drop those left empty."""
    clamped = []
    for seg in segments:
        s = min(max(seg.start, start), end)
        e = min(max(seg.end, start), end)
        if e <= s or not seg.text.strip():
            continue
        clamped.append(Segment(start=s, end=e, text=seg.text.strip()))
    return clamped


def distribute_text(segments: Sequence[Segment], translated_text: str) -> List[Segment]:
    """Spread ``translated_text`` over the original cue timings.

    Each cue receives a share of the translated words proportional to the
    length of its original text, so cue boundaries stay exactly where the
    transcription put them.
    """
    words = _WORDS.findall(translated_text)
    if not segments or not words:
        return []
    weights = [max(1, len(seg.text.strip())) for seg in segments]
    total = sum(weights)

    result = []
    taken = 0
    cumulative = 0
    for seg, weight in zip(segments, weights):
        cumulative += weight
        upto = math.floor(len(words) * cumulative / total + 0.5)
        chunk = words[taken:upto]
        taken = upto
        if chunk:
            result.append(Segment(start=seg.start, end=seg.end, text=" ".join(chunk)))
    return result


def align_to_timings(
    original: Sequence[Segment], aligned: Optional[Sequence[Segment]]
) -> List[Segment]:
    """Force model-aligned cues back onto the original cue boundaries.

    Cues are matched by position. Returns an empty list when the counts do
    not match, signalling the caller to fall back to :func:`distribute_text`.
    """
    if not aligned or len(aligned) != len(original):
        return []
    return [
        Segment(start=o.start, end=o.end, text=a.text.strip())
        for o, a in zip(original, aligned)
        if a.text.strip()
    ]
