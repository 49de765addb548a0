# scan_app/utils.py

import os
import re
import time
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import aiofiles.os
import langcodes

from .exceptions import FileAccessError
from .models import FileIdentity

log = logging.getLogger(__name__)

UNDEFINED_LANGUAGE = "zz" # Sorts after every real language tag

def now_ms() -> int:
    return time.time_ns() // 1_000_000

def mtime_ms(st: os.stat_result) -> int:
    return st.st_mtime_ns // 1_000_000

def newest_ms(st: os.stat_result) -> int:
    """Latest of mtime and ctime; a rename inside a directory only bumps ctime."""
    return max(st.st_mtime_ns, st.st_ctime_ns) // 1_000_000

def created_ms(st: os.stat_result) -> int:
    birth = getattr(st, 'st_birthtime', None)
    if birth:
        return int(birth * 1000)
    return mtime_ms(st)

def identity_from_stat(relative_path: str, st: os.stat_result) -> FileIdentity:
    return FileIdentity(
        relative_path=relative_path,
        inode=st.st_ino,
        size=st.st_size,
        modified_time=mtime_ms(st),
    )

async def stat_path(path: Path) -> os.stat_result:
    try:
        return await aiofiles.os.stat(path)
    except OSError as e:
        raise FileAccessError(path, e.strerror or str(e)) from e

def new_item_id() -> str:
    return uuid.uuid4().hex

def date_from_ms(ms: int) -> str:
    """Local calendar date of a unix-ms timestamp, as YYYY-MM-DD."""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d")

def split_extension(name: str) -> Tuple[str, str]:
    """'a/b.S01E01.mkv' -> ('a/b.S01E01', 'mkv'). Extension is lowercased."""
    if '.' not in name.rsplit('/', 1)[-1]:
        return name, ''
    base, ext = name.rsplit('.', 1)
    return base, ext.lower()

def served_image_path(collection_id: int, owner_id: Optional[str], image_id: int, ext: str) -> str:
    ext = ext.lower()
    if ext == 'tbn':
        ext = 'jpg'
    return f"/api/image/{collection_id}/{owner_id}/{image_id}.{ext}"

def normalize_language(qualifier: Optional[str]) -> str:
    """
    Normalizes a subtitle filename qualifier to a language tag.
    Empty or 'und' gives the synthetic tag that sorts last.
    """
    if not qualifier or qualifier.strip().lower() in ('und', ''):
        return UNDEFINED_LANGUAGE
    q = qualifier.strip()
    if langcodes.tag_is_valid(q):
        try:
            return langcodes.standardize_tag(q)
        except ValueError as e:
            log.debug(f"langcodes could not standardize '{q}': {e}")
    return q.lower()

_YEAR_DIR_RE = re.compile(r'^(.*) \(([0-9]{4})\)$')

def title_year_from_dirname(dirname: str) -> Tuple[str, Optional[int]]:
    """'Blade Runner (1982)' -> ('Blade Runner', 1982); no year suffix -> (dirname, None)."""
    m = _YEAR_DIR_RE.match(dirname)
    if m:
        return m.group(1), int(m.group(2))
    return dirname, None
