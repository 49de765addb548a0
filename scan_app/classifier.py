# scan_app/classifier.py
"""
Filename classification for collection directories.

Every name handed to `classify` is relative to the item directory and may carry
one level of subdirectory ("S01/show.s01e01.mkv"). Classification only looks at
names; associating sidecars (images, subtitles, NFOs) with a video happens later
through `associate`, once all video bases of the directory are known.
"""
import re
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union, Callable, List, Iterable

from .utils import split_extension

log = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({'avi', 'divx', 'm4u', 'm4v', 'mkv', 'mov', 'mp4', 'webm'})
IMAGE_EXTENSIONS = frozenset({'jpg', 'jpeg', 'png', 'tbn'})
SUBTITLE_EXTENSIONS = frozenset({'srt', 'vtt', 'ass', 'ssa', 'sub'})
ASPECTS = frozenset({
    'banner', 'clearart', 'clearlogo', 'discart', 'fanart',
    'keyart', 'landscape', 'poster', 'thumb',
})
ASPECT_ALIASES = {'folder': 'poster'}

# --- Classification results ---

@dataclass(frozen=True)
class Video:
    base: str
    season_hint: Optional[int] = None

@dataclass(frozen=True)
class Image:
    base: str
    ext: str
    aspect_hint: Optional[str] = None # Set when the name itself is an aspect keyword ("poster.jpg")

@dataclass(frozen=True)
class SeasonImage:
    season: str # "all", "specials" or a numeral without leading zeros
    aspect: str
    ext: str
    qualified: bool = False # "season01-poster.jpg" rather than "season01.jpg"

@dataclass(frozen=True)
class ShowSubdir:
    season_number: int

@dataclass(frozen=True)
class Nfo:
    base: str

@dataclass(frozen=True)
class Subtitle:
    base: str
    ext: str

@dataclass(frozen=True)
class Unclassified:
    name: str

Classification = Union[Video, Image, SeasonImage, ShowSubdir, Nfo, Subtitle, Unclassified]

# --- Episode numbering grammar ---

@dataclass(frozen=True)
class EpisodeMatch:
    season: int
    episode: int
    double: bool = False

# Separators a numbering token must sit between.
_L = r'(?:^|(?<=[ ._\-\[(]))'
_R = r'(?=$|[ ._\[\]()])'

def _classic(m: re.Match, hint: Optional[int]) -> Optional[EpisodeMatch]:
    return EpisodeMatch(int(m.group(1)), int(m.group(2)))

def _double(m: re.Match, hint: Optional[int]) -> Optional[EpisodeMatch]:
    return EpisodeMatch(int(m.group(1)), int(m.group(2)), double=True)

def _air_date(m: re.Match, hint: Optional[int]) -> Optional[EpisodeMatch]:
    year, month, day = m.group(1), m.group(2), m.group(3)
    if not (1 <= int(month) <= 12 and 1 <= int(day) <= 31):
        return None
    return EpisodeMatch(hint if hint is not None else 0, int(year + month + day))

def _cross(m: re.Match, hint: Optional[int]) -> Optional[EpisodeMatch]:
    season, episode = int(m.group(1)), int(m.group(2))
    if hint is None:
        token = m.group(0)
        # A bare 19xx/20xx is a release year, not season 19 or 20.
        if len(token) == 4 and token.isdigit() and 1900 <= int(token) <= 2099:
            return None
        return EpisodeMatch(season, episode)
    return EpisodeMatch(season, episode) if season == hint else None

Extractor = Callable[[re.Match, Optional[int]], Optional[EpisodeMatch]]

# Priority order, first accepted match wins.
EPISODE_GRAMMAR: List[Tuple[re.Pattern, Extractor]] = [
    (re.compile(_L + r's(\d{1,3})\.?e(\d{1,4})' + _R, re.IGNORECASE), _classic),
    (re.compile(_L + r's(\d{1,3})e(\d{1,4})-?e(\d{1,4})' + _R, re.IGNORECASE), _double),
    (re.compile(_L + r'(\d{4})[.-](\d{2})[.-](\d{2})' + _R), _air_date),
    (re.compile(_L + r'(\d{1,2})x?(\d{2})' + _R, re.IGNORECASE), _cross),
]

def parse_episode(base: str, season_hint: Optional[int] = None) -> Optional[EpisodeMatch]:
    """Season/episode numbering of a video base, or None when it is not an episode."""
    name = base.rsplit('/', 1)[-1]
    for pattern, extract in EPISODE_GRAMMAR:
        for m in pattern.finditer(name):
            result = extract(m, season_hint)
            if result is not None:
                return result
    return None

# --- Directory and image name grammars ---

_SHOW_SUBDIR_RE = re.compile(r'^(?:s|season[ ._-]?)(\d{1,3})$', re.IGNORECASE)
_SPECIALS_RE = re.compile(r'^specials\d*$', re.IGNORECASE)
_SEASON_IMG_RE = re.compile(
    r'^season(?:(\d+)|-(all|specials))(?:-([a-z]+))?\.(jpg|jpeg|png|tbn)$',
    re.IGNORECASE,
)

def classify_subdir(name: str) -> Optional[ShowSubdir]:
    if _SPECIALS_RE.match(name):
        return ShowSubdir(0)
    m = _SHOW_SUBDIR_RE.match(name)
    if m:
        return ShowSubdir(int(m.group(1)))
    return None

def is_show_subdir(name: str) -> bool:
    return classify_subdir(name) is not None

def _season_image(filename: str) -> Optional[Classification]:
    m = _SEASON_IMG_RE.match(filename)
    if not m:
        return None
    season = str(int(m.group(1))) if m.group(1) is not None else m.group(2).lower()
    aspect = (m.group(3) or 'poster').lower()
    aspect = ASPECT_ALIASES.get(aspect, aspect)
    if aspect not in ASPECTS:
        log.debug(f"Season image '{filename}' has unknown aspect '{aspect}', ignoring.")
        return Unclassified(filename)
    return SeasonImage(season=season, aspect=aspect, ext=m.group(4).lower(), qualified=m.group(3) is not None)

def is_ignored(name: str) -> bool:
    """Hidden entries and '+ ' entries are never scanned."""
    return name.startswith('.') or name.startswith('+ ')

def classify(name: str) -> Classification:
    subdir, _, filename = name.rpartition('/')
    base, ext = split_extension(name)
    season_hint = None
    if subdir:
        show_subdir = classify_subdir(subdir)
        season_hint = show_subdir.season_number if show_subdir else None

    if ext in VIDEO_EXTENSIONS:
        return Video(base=base, season_hint=season_hint)
    if ext == 'nfo':
        return Nfo(base=base)
    if ext in SUBTITLE_EXTENSIONS:
        return Subtitle(base=base, ext=ext)
    if ext in IMAGE_EXTENSIONS:
        season_img = _season_image(filename)
        if season_img is not None:
            return season_img
        stem = base.rsplit('/', 1)[-1].lower()
        aspect = ASPECT_ALIASES.get(stem, stem)
        if aspect in ASPECTS:
            if season_hint is not None:
                # "S02/poster.jpg" is the poster of season 2.
                return SeasonImage(season=str(season_hint), aspect=aspect, ext=ext)
            return Image(base=base, ext=ext, aspect_hint=aspect)
        return Image(base=base, ext=ext)
    return Unclassified(name)

# --- Sidecar association ---

def associate(stem: str, bases: Iterable[str]) -> Optional[Tuple[str, Optional[str]]]:
    """
    Finds the video base a sidecar stem belongs to.
    Tries '<base>' first, then '<base>[.-]<qualifier>' with the longest matching base.
    Returns (base, qualifier) or None.
    """
    known = bases if isinstance(bases, (set, frozenset, dict)) else set(bases)
    if stem in known:
        return stem, None
    for i in range(len(stem) - 1, 0, -1):
        if stem[i] in '.-' and stem[:i] in known:
            qualifier = stem[i + 1:]
            if qualifier and '/' not in qualifier:
                return stem[:i], qualifier
    return None

def sidecar_image_aspect(qualifier: Optional[str]) -> Optional[str]:
    """Aspect of an image associated to a video base; unqualified images are the poster."""
    if qualifier is None:
        return 'poster'
    q = qualifier.lower()
    q = ASPECT_ALIASES.get(q, q)
    return q if q in ASPECTS else None
