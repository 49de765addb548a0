# scan_app/walker.py
import stat
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Dict

import aiofiles.os

from .classifier import is_ignored, VIDEO_EXTENSIONS
from .exceptions import FileAccessError
from .models import FileIdentity
from .utils import identity_from_stat, created_ms, newest_ms, split_extension, stat_path

log = logging.getLogger(__name__)

@dataclass
class DirEntry:
    name: str # Relative to the listed directory, "S01/show.s01e01.mkv" for subdirectory entries
    identity: FileIdentity
    is_dir: bool = False

@dataclass
class DirListing:
    directory: Path
    identity: FileIdentity # Of the listed directory itself, relative to its parent
    entries: List[DirEntry] = field(default_factory=list)
    oldest: Optional[int] = None # Unix ms
    newest: int = 0 # Unix ms

    def _seen(self, st, count_as_oldest: bool):
        if count_as_oldest:
            created = created_ms(st)
            if self.oldest is None or created < self.oldest:
                self.oldest = created
        self.newest = max(self.newest, newest_ms(st))

    @property
    def files(self) -> List[DirEntry]:
        return [e for e in self.entries if not e.is_dir]

    @property
    def subdirs(self) -> List[DirEntry]:
        return [e for e in self.entries if e.is_dir]

    def files_by_name(self) -> Dict[str, DirEntry]:
        return {e.name: e for e in self.entries if not e.is_dir}


DescendFilter = Callable[[str], bool]

async def _list_names(directory: Path) -> List[str]:
    try:
        names = await aiofiles.os.listdir(directory)
    except OSError as e:
        raise FileAccessError(directory, e.strerror or str(e)) from e
    return sorted(n for n in names if not is_ignored(n))

async def _scan_level(listing: DirListing, directory: Path, prefix: str, descend: Optional[DescendFilter]):
    for name in await _list_names(directory):
        rel = f"{prefix}{name}"
        try:
            st = await aiofiles.os.stat(directory / name)
        except OSError as e:
            log.debug(f"Cannot stat '{directory / name}', skipping: {e}")
            continue

        if stat.S_ISDIR(st.st_mode):
            listing.entries.append(DirEntry(rel, identity_from_stat(rel, st), is_dir=True))
            if descend is None or not descend(name):
                continue
            listing._seen(st, count_as_oldest=True)
            try:
                await _scan_level(listing, directory / name, f"{rel}/", descend=None)
            except FileAccessError as e:
                log.debug(f"Unreadable subdirectory treated as empty: {e}")
            continue

        if not stat.S_ISREG(st.st_mode):
            continue
        _, ext = split_extension(name)
        if ext in VIDEO_EXTENSIONS or ext == 'nfo':
            listing._seen(st, count_as_oldest=False)
        listing.entries.append(DirEntry(rel, identity_from_stat(rel, st)))

async def read_dir(directory: Path, descend: Optional[DescendFilter] = None, relative_name: Optional[str] = None) -> DirListing:
    """
    Lists a directory. Subdirectories for which `descend(name)` is true are
    listed too, one level deep; other subdirectories appear as entries only.
    Hidden and '+ ' entries are skipped. Entries are sorted by relative name.

    Descended directories count towards both the oldest and newest timestamp,
    video and NFO files only towards the newest.
    Raises FileAccessError if the directory itself cannot be read.
    """
    st = await stat_path(directory)
    listing = DirListing(directory=directory, identity=identity_from_stat(relative_name or directory.name, st))
    listing._seen(st, count_as_oldest=True)
    await _scan_level(listing, directory, "", descend=descend)
    listing.entries.sort(key=lambda e: e.name)
    return listing


@dataclass
class ItemDirectory:
    name: str
    inode: int
    newest: int

async def item_directory(root: Path, name: str, descend: Optional[DescendFilter] = None) -> ItemDirectory:
    """Raises FileAccessError if `root / name` cannot be read."""
    listing = await read_dir(root / name, descend=descend, relative_name=name)
    return ItemDirectory(name=name, inode=listing.identity.inode, newest=listing.newest)

async def list_item_directories(root: Path, descend: Optional[DescendFilter] = None) -> List[ItemDirectory]:
    """
    Candidate item directories of a collection root with the newest timestamp
    found in each. Unreadable item directories are logged and left out.
    """
    result = []
    for name in await _list_names(root):
        try:
            if not await aiofiles.os.path.isdir(root / name):
                continue
            result.append(await item_directory(root, name, descend=descend))
        except FileAccessError as e:
            log.warning(f"Skipping unreadable directory: {e}")
    return result
