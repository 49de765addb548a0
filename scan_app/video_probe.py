# scan_app/video_probe.py
import asyncio
import logging
from pathlib import Path
from typing import Optional, Any, Protocol

from pymediainfo import MediaInfo as MediaInfoParser

from .models import VideoInfo, VideoTrack, AudioTrack, SubtitleTrack

log = logging.getLogger(__name__)

class VideoProbe(Protocol):
    async def probe(self, path: Path) -> Optional[VideoInfo]:
        """Track information for a video file, or None if it cannot be probed."""
        ...


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).split('/')[0].strip())
    except ValueError:
        return None

def _flag(value: Any) -> bool:
    return str(value).strip().lower() in ('yes', 'true', '1')

def _title_has(track: Any, *words: str) -> bool:
    title = (getattr(track, 'title', None) or '').lower()
    return any(w in title for w in words)

def video_codec(vformat: Optional[str], format_version: Optional[str] = None) -> Optional[str]:
    if not vformat:
        return None
    vformat = vformat.lower()
    if 'avc' in vformat or 'h264' in vformat: return 'h264'
    elif 'hevc' in vformat or 'h265' in vformat: return 'h265'
    elif 'vp9' in vformat: return 'vp9'
    elif 'av1' in vformat: return 'av1'
    elif 'mpeg-4 visual' in vformat or 'xvid' in vformat: return 'xvid'
    elif 'mpeg video' in vformat:
        return 'mpeg2' if 'version 2' in (format_version or '').lower() else 'mpeg1'
    return vformat.split('/')[0].strip()

def audio_codec(aformat: Optional[str]) -> Optional[str]:
    if not aformat:
        return None
    aformat = aformat.lower()
    if 'aac' in aformat: return 'aac'
    elif 'e-ac-3' in aformat: return 'eac3'
    elif 'ac-3' in aformat: return 'ac3'
    elif 'dts' in aformat: return 'dts'
    elif 'truehd' in aformat: return 'truehd'
    elif 'opus' in aformat: return 'opus'
    elif 'vorbis' in aformat: return 'vorbis'
    elif 'flac' in aformat: return 'flac'
    elif 'mp3' in aformat or 'mpeg audio' in aformat: return 'mp3'
    elif 'pcm' in aformat: return 'pcm'
    return aformat.split('/')[0].strip()

def video_info_from_mediainfo(media_info: Any) -> VideoInfo:
    info = VideoInfo()
    for track in media_info.tracks:
        if track.track_type == 'Video' and info.video_track is None:
            info.video_track = VideoTrack(
                track_id=_as_int(getattr(track, 'track_id', None)),
                width=_as_int(getattr(track, 'width', None)),
                height=_as_int(getattr(track, 'height', None)),
                codec=video_codec(getattr(track, 'format', None), getattr(track, 'format_version', None)),
            )
        elif track.track_type == 'Audio':
            info.audio_tracks.append(AudioTrack(
                track_id=_as_int(getattr(track, 'track_id', None)),
                codec=audio_codec(getattr(track, 'format', None)),
                channels=_as_int(getattr(track, 'channel_s', None)),
                language=getattr(track, 'language', None),
                commentary=_title_has(track, 'commentary'),
            ))
        elif track.track_type == 'Text':
            info.subtitle_tracks.append(SubtitleTrack(
                track_id=_as_int(getattr(track, 'track_id', None)),
                codec=(getattr(track, 'format', None) or None),
                language=getattr(track, 'language', None),
                forced=_flag(getattr(track, 'forced', None)),
                sdh=_title_has(track, 'sdh', 'hearing impaired'),
                commentary=_title_has(track, 'commentary'),
            ))
    return info


class MediaInfoProbe:
    """Probes video files with libmediainfo, off the event loop."""

    def _probe_sync(self, path: Path) -> Optional[VideoInfo]:
        try:
            media_info = MediaInfoParser.parse(str(path))
        except (OSError, RuntimeError, ValueError) as e:
            log.warning(f"Could not probe video '{path}': {e}")
            return None
        return video_info_from_mediainfo(media_info)

    async def probe(self, path: Path) -> Optional[VideoInfo]:
        log.debug(f"Probing video: {path}")
        return await asyncio.to_thread(self._probe_sync, path)


class NullProbe:
    """Used when probing is disabled: never produces video info."""

    async def probe(self, path: Path) -> Optional[VideoInfo]:
        return None
