# scan_app/nfo_parser.py
"""
Kodi style NFO sidecar parsing.

Structurally invalid XML fails the whole document with `NfoParseError`.
Individual malformed fields (numbers, durations) never do: they become None.
"""
import re
import math
import logging
from pathlib import Path
from typing import Optional, List, Union

import aiofiles
from lxml import etree

from .enums import NfoType
from .exceptions import FileAccessError, NfoParseError
from .genres import normalize_genres
from .models import NfoDocument, ItemMetadata, Rating, UniqueId, Actor

log = logging.getLogger(__name__)

_RUNTIME_MINUTES_RE = re.compile(r'^(\d+)$')
_RUNTIME_CLOCK_RE = re.compile(r'^(\d+):(\d{1,2})(?::(\d{1,2}))?$')
_RUNTIME_HOURS_RE = re.compile(r'^(\d+)h(\d{1,2})(?:m(?:(\d{1,2})s?)?)?$', re.IGNORECASE)

def lenient_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return None

def lenient_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        f = float(value.strip())
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None

def parse_runtime(value: Optional[str]) -> Optional[int]:
    """
    Runtime in minutes. Accepted forms, first match wins:
    '118' (zero is absent), '1:58' / '1:58:30', '1h58' / '1h58m' / '1h58m30s'.
    """
    if value is None:
        return None
    v = value.strip()
    m = _RUNTIME_MINUTES_RE.match(v)
    if m:
        minutes = int(m.group(1))
        return minutes if minutes > 0 else None
    m = _RUNTIME_CLOCK_RE.match(v) or _RUNTIME_HOURS_RE.match(v)
    if m:
        return int(m.group(1)) * 60 + int(m.group(2))
    return None

# --- Element helpers ---

def _text(el: etree._Element, tag: str) -> Optional[str]:
    child = el.find(tag)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None

def _texts(el: etree._Element, tag: str) -> List[str]:
    values = []
    for child in el.findall(tag):
        if child.text and child.text.strip():
            values.append(child.text.strip())
    return values

def _is_true(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() == 'true'

def _parse_ratings(root: etree._Element) -> List[Rating]:
    ratings = []
    container = root.find('ratings')
    if container is not None:
        for r in container.findall('rating'):
            ratings.append(Rating(
                name=(r.get('name') or 'default').strip(),
                value=lenient_float(_text(r, 'value')),
                votes=lenient_int(_text(r, 'votes')),
                max=lenient_int(r.get('max')),
                default=_is_true(r.get('default')),
            ))
    if not ratings:
        # Old style: <rating>7.5</rating><votes>1234</votes>
        value = lenient_float(_text(root, 'rating'))
        if value is not None:
            ratings.append(Rating(name='default', value=value, votes=lenient_int(_text(root, 'votes')), default=True))
    return ratings

def _parse_unique_ids(root: etree._Element) -> List[UniqueId]:
    ids = []
    for u in root.findall('uniqueid'):
        value = (u.text or '').strip()
        if not value:
            continue
        ids.append(UniqueId(type=(u.get('type') or 'unknown').strip().lower(), value=value, default=_is_true(u.get('default'))))
    if ids:
        return ids

    # Old style id elements.
    imdb = _text(root, 'imdbid') or _text(root, 'id')
    if imdb and imdb.startswith('tt'):
        ids.append(UniqueId(type='imdb', value=imdb))
    for tag, idtype in (('tmdbid', 'tmdb'), ('tvdbid', 'tvdb')):
        value = _text(root, tag)
        if value and value != '0':
            ids.append(UniqueId(type=idtype, value=value))
    if ids:
        ids[0].default = True
    return ids

def _parse_actors(root: etree._Element) -> List[Actor]:
    actors = []
    for a in root.findall('actor'):
        name = _text(a, 'name')
        if not name:
            continue
        actors.append(Actor(name=name, role=_text(a, 'role'), order=lenient_int(_text(a, 'order')), thumb=_text(a, 'thumb')))
    return actors

def _premiered(root: etree._Element, year: Optional[int]) -> Optional[str]:
    premiered = _text(root, 'premiered') or _text(root, 'releasedate')
    if premiered:
        return premiered
    if year is not None and year > 0:
        return f"{year:04d}-01-01"
    return None

def parse_nfo(data: Union[bytes, str], source: Union[Path, str, None] = None) -> NfoDocument:
    """Parses NFO content. Raises NfoParseError if the document is not well-formed XML."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as e:
        raise NfoParseError(source or "<nfo>", str(e)) from e

    year = lenient_int(_text(root, 'year'))
    if year is not None and 0 < year < 100:
        year += 1900

    metadata = ItemMetadata(
        title=_text(root, 'title'),
        plot=_text(root, 'plot') or _text(root, 'outline'),
        tagline=_text(root, 'tagline'),
        ratings=_parse_ratings(root),
        unique_ids=_parse_unique_ids(root),
        actors=_parse_actors(root),
        credits=_texts(root, 'credits'),
        directors=_texts(root, 'director'),
        original_title=_text(root, 'originaltitle'),
        sort_title=_text(root, 'sorttitle'),
        countries=_texts(root, 'country'),
        genres=normalize_genres(_texts(root, 'genre')),
        studios=_texts(root, 'studio'),
        premiered=_premiered(root, year),
        mpaa=_text(root, 'mpaa'),
    )
    doc = NfoDocument(
        nfo_type=NfoType.from_root_tag(root.tag if isinstance(root.tag, str) else ''),
        metadata=metadata,
        runtime=parse_runtime(_text(root, 'runtime')),
        year=year,
        status=_text(root, 'status'),
        season=lenient_int(_text(root, 'season')),
        episode=lenient_int(_text(root, 'episode')),
        aired=_text(root, 'aired'),
        display_season=lenient_int(_text(root, 'displayseason')),
        display_episode=lenient_int(_text(root, 'displayepisode')),
    )
    log.debug(f"Parsed {doc.nfo_type.value} NFO {source or ''}: title={metadata.title!r}")
    return doc

async def read_nfo(path: Path) -> NfoDocument:
    """Reads and parses an NFO file. Raises FileAccessError or NfoParseError."""
    try:
        async with aiofiles.open(path, 'rb') as f:
            data = await f.read()
    except OSError as e:
        raise FileAccessError(path, e.strerror or str(e)) from e
    return parse_nfo(data, source=path)
