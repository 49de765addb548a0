# tests/test_video_probe.py
from pathlib import Path
from types import SimpleNamespace

import pytest

from scan_app.video_probe import (
    MediaInfoProbe, NullProbe, video_codec, audio_codec, video_info_from_mediainfo,
)


def track(track_type, **fields):
    return SimpleNamespace(track_type=track_type, **fields)


@pytest.mark.parametrize("vformat, version, expected", [
    ("AVC", None, "h264"),
    ("HEVC", None, "h265"),
    ("VP9", None, "vp9"),
    ("AV1", None, "av1"),
    ("MPEG-4 Visual", None, "xvid"),
    ("MPEG Video", "Version 2", "mpeg2"),
    ("MPEG Video", "Version 1", "mpeg1"),
    ("ProRes", None, "prores"),
    (None, None, None),
])
def test_video_codec(vformat, version, expected):
    assert video_codec(vformat, version) == expected


@pytest.mark.parametrize("aformat, expected", [
    ("AAC LC", "aac"),
    ("E-AC-3", "eac3"),
    ("AC-3", "ac3"),
    ("DTS XLL", "dts"),
    ("MLP FBA / TrueHD", "truehd"),
    ("Opus", "opus"),
    ("FLAC", "flac"),
    ("MPEG Audio", "mp3"),
    ("", None),
])
def test_audio_codec(aformat, expected):
    assert audio_codec(aformat) == expected


def test_video_info_from_mediainfo():
    media_info = SimpleNamespace(tracks=[
        track("General", title="Blade Runner"),
        track("Video", track_id="1", width=1920, height="1 080", format="AVC"),
        track("Video", track_id="9", width=640, height=480, format="MPEG-4 Visual"),
        track("Audio", track_id="2", format="E-AC-3", channel_s="6", language="en", title="Main"),
        track("Audio", track_id="3", format="AAC LC", channel_s="2 / 1", language="en", title="Director's Commentary"),
        track("Text", track_id="4", format="UTF-8", language="nl", forced="Yes", title=None),
        track("Text", track_id="5", format="PGS", language="en", forced="No", title="English SDH"),
    ])

    info = video_info_from_mediainfo(media_info)

    assert info.video_track.track_id == 1
    assert info.video_track.width == 1920
    assert info.video_track.height is None # Unparseable values become None
    assert info.video_track.codec == "h264"
    assert [(a.codec, a.channels, a.commentary) for a in info.audio_tracks] == [("eac3", 6, False), ("aac", 2, True)]
    assert [(s.language, s.forced, s.sdh) for s in info.subtitle_tracks] == [("nl", True, False), ("en", False, True)]
    assert info.subtitle_tracks[1].codec == "PGS"


@pytest.mark.asyncio
async def test_mediainfo_probe_uses_parser(mocker):
    parse = mocker.patch(
        "scan_app.video_probe.MediaInfoParser.parse",
        return_value=SimpleNamespace(tracks=[track("Video", track_id="1", width=1280, height=720, format="HEVC")]),
    )

    info = await MediaInfoProbe().probe(Path("/media/movie.mkv"))

    parse.assert_called_once_with("/media/movie.mkv")
    assert info.video_track.codec == "h265"


@pytest.mark.asyncio
async def test_mediainfo_probe_failure_returns_none(mocker, caplog):
    mocker.patch("scan_app.video_probe.MediaInfoParser.parse", side_effect=OSError("libmediainfo not found"))

    assert await MediaInfoProbe().probe(Path("/media/movie.mkv")) is None
    assert "Could not probe video" in caplog.text


@pytest.mark.asyncio
async def test_null_probe():
    assert await NullProbe().probe(Path("/media/movie.mkv")) is None
