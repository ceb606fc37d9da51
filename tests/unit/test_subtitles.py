"""Subtitle rendering and alignment."""

import pytest

from vidlingo.activities.language import LanguageActivities
from vidlingo.activities.subtitles import (
    align_to_timings,
    clamp_segments,
    distribute_text,
    format_timestamp,
    to_srt,
    to_vtt,
)
from vidlingo.contracts import Segment, SubtitleRequest

SEGMENTS = [
    Segment(start=0.0, end=2.5, text="Hello world."),
    Segment(start=2.5, end=3661.042, text="This is a much longer sentence."),
]


def test_format_timestamp():
    assert format_timestamp(0) == "00:00:00,000"
    assert format_timestamp(3661.042, "srt") == "01:01:01,042"
    assert format_timestamp(3661.042, "vtt") == "01:01:01.042"
    assert format_timestamp(-3) == "00:00:00,000"


def test_srt_and_vtt_share_cue_boundaries():
    srt = to_srt(SEGMENTS)
    vtt = to_vtt(SEGMENTS)

    assert srt.startswith("1\n00:00:00,000 --> 00:00:02,500\nHello world.\n")
    assert "2\n00:00:02,500 --> 01:01:01,042\n" in srt
    assert vtt.startswith("WEBVTT\n\n00:00:00.000 --> 00:00:02.500\nHello world.\n")
    srt_times = [l for l in srt.splitlines() if "-->" in l]
    vtt_times = [l for l in vtt.splitlines() if "-->" in l]
    assert [t.replace(",", ".") for t in srt_times] == vtt_times


def test_empty_subtitles():
    assert to_srt([]) == ""
    assert to_vtt([]) == "WEBVTT\n\n"


def test_distribute_text_keeps_timings_and_words():
    cues = distribute_text(SEGMENTS, "Hola mundo. Esta es una frase mucho más larga.")
    assert [(c.start, c.end) for c in cues] == [(0.0, 2.5), (2.5, 3661.042)]
    assert " ".join(c.text for c in cues) == "Hola mundo. Esta es una frase mucho más larga."
    assert distribute_text([], "text") == []
    assert distribute_text(SEGMENTS, "   ") == []


def test_clamp_segments_to_source_span():
    cues = [
        Segment(start=0.0, end=1.0, text="before"),
        Segment(start=4.0, end=12.0, text="overlong"),
        Segment(start=20.0, end=21.0, text="after"),
    ]
    clamped = clamp_segments(cues, start=2.0, end=10.0)
    assert [(c.start, c.end, c.text) for c in clamped] == [(4.0, 10.0, "overlong")]


def test_align_to_timings_requires_matching_counts():
    aligned = [Segment(start=9, end=10, text="Hola"), Segment(start=11, end=12, text="Adiós")]
    result = align_to_timings(SEGMENTS, aligned)
    assert [(c.start, c.end, c.text) for c in result] == [
        (0.0, 2.5, "Hola"),
        (2.5, 3661.042, "Adiós"),
    ]
    assert align_to_timings(SEGMENTS, aligned[:1]) == []


@pytest.mark.asyncio
async def test_generate_subtitles_without_model_alignment():
    activities = LanguageActivities("test", align_with_model=False)
    request = SubtitleRequest(
        segments=SEGMENTS, translated_text="Hola mundo. Una frase.", target_language="Spanish"
    )
    result = await activities.generate_subtitles(None, request)
    assert len(result.segments) == 2
    assert result.srt_content.count("-->") == result.vtt_content.count("-->") == 2
