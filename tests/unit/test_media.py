"""FFmpeg argument construction and subprocess failures."""

from pathlib import Path

import pytest

from vidlingo.activities import media
from vidlingo.errors import MediaProcessingError


def test_media_type_detection():
    assert media.file_extension("https://x.test/clip.MP4?token=1") == ".mp4"
    assert media.is_video_file("/videos/talk.mkv")
    assert media.is_audio_file("podcast.flac")
    assert not media.is_video_file("notes.txt")
    assert not media.is_audio_file("https://x.test/stream")


def test_extract_audio_args():
    args = media.extract_audio_args(Path("in.mov"), Path("out.mp3"))
    assert args[args.index("-acodec") + 1] == "libmp3lame"
    assert args[args.index("-b:a") + 1] == "192k"
    assert args[args.index("-ac") + 1] == "2"
    assert args[args.index("-ar") + 1] == "44100"
    assert "-vn" in args
    assert args[-1] == "out.mp3"


def test_soft_subtitle_codec_depends_on_container():
    mp4 = media.soft_subtitle_args(Path("v.mp4"), Path("s.srt"), Path("o.mp4"), "spa")
    mkv = media.soft_subtitle_args(Path("v.mkv"), Path("s.srt"), Path("o.mkv"), "spa")
    assert mp4[mp4.index("-c:s") + 1] == "mov_text"
    assert mkv[mkv.index("-c:s") + 1] == "srt"
    assert "language=spa" in mp4
    assert mp4[mp4.index("-c:v") + 1] == "copy"


def test_burn_in_uses_subtitles_filter():
    args = media.burn_in_args(Path("v.mp4"), Path("C:/subs/s.srt"), Path("o.mp4"))
    assert args[args.index("-vf") + 1] == "subtitles='C\\:/subs/s.srt'"
    assert args[args.index("-c:a") + 1] == "copy"


@pytest.mark.asyncio
async def test_missing_ffmpeg_binary_is_permanent(monkeypatch):
    monkeypatch.setattr(media, "FFMPEG_BINARY", "vidlingo-no-such-ffmpeg")
    with pytest.raises(MediaProcessingError):
        await media.run_ffmpeg(["-version"])
