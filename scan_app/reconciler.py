# scan_app/reconciler.py
import copy
import logging
from typing import Optional

from .builder import MediaItemBuilder, BuildResult
from .classifier import is_show_subdir
from .enums import CollectionType
from .exceptions import FileAccessError
from .models import Collection, MediaItem, Movie, TVShow, ScanResult
from .utils import new_item_id, now_ms, date_from_ms
from .video_probe import VideoProbe
from .walker import read_dir, DescendFilter

log = logging.getLogger(__name__)

def descend_filter(collection: Collection) -> Optional[DescendFilter]:
    """Shows are walked one level into their season directories, movies not at all."""
    return is_show_subdir if collection.type == CollectionType.SHOWS else None


def is_acceptable(item: MediaItem, build: BuildResult) -> bool:
    """
    An item is kept if it has NFO metadata and at least one thumbnail,
    or if it has something to play.
    """
    if not build.accepted_candidate:
        return False
    if build.nfo_parsed and item.thumbnails:
        return True
    if isinstance(item, Movie):
        return item.video_file is not None
    if isinstance(item, TVShow):
        return any(season.episodes for season in item.seasons)
    return False


class ReconciliationEngine:
    """
    Merges a fresh scan of one item directory into the previously stored item.

    The previous item is never modified: the merge works on a deep copy, so a
    caller can compare old and new and decide what to persist.
    """
    def __init__(self, probe: Optional[VideoProbe] = None):
        self.probe = probe

    def _draft(self, collection: Collection, previous: Optional[MediaItem]) -> MediaItem:
        if previous is not None:
            return copy.deepcopy(previous)
        cls = Movie if collection.type == CollectionType.MOVIES else TVShow
        return cls(id=new_item_id(), collection_id=collection.collection_id)

    async def reconcile(self, collection: Collection, dirname: str, previous: Optional[MediaItem] = None,
                        only_nfo: bool = False) -> ScanResult:
        """
        Rescans `dirname` (relative to the collection root) against `previous`.
        Returns a ScanResult whose item is None if the directory is not, or no
        longer, an acceptable item. Never raises for unreadable files.
        """
        directory = collection.directory / dirname
        try:
            listing = await read_dir(directory, descend=descend_filter(collection), relative_name=dirname)
        except FileAccessError as e:
            log.warning(f"Cannot read item directory, no item: {e}")
            return ScanResult(item=None)

        draft = self._draft(collection, previous)
        # A directory seen for the first time always gets a full build.
        builder = MediaItemBuilder(collection, self.probe, only_nfo=only_nfo and previous is not None)
        if isinstance(draft, Movie):
            build = await builder.build_movie(draft, dirname, listing)
        else:
            build = await builder.build_show(draft, dirname, listing)

        renamed = previous is not None and previous.dirname is not None and previous.dirname != dirname
        draft.directory = listing.identity
        draft.last_modified = listing.newest
        if not draft.date_added and listing.oldest is not None:
            draft.date_added = date_from_ms(listing.oldest)
        if renamed:
            log.info(f"Directory renamed: '{previous.dirname}' -> '{dirname}'")
            draft.last_modified = now_ms()

        if not is_acceptable(draft, build):
            log.debug(f"'{dirname}' does not qualify as a {draft.item_type}.")
            return ScanResult(item=None, deletions=build.deletions, renamed=renamed)

        draft.deleted = False
        return ScanResult(item=draft, deletions=build.deletions, renamed=renamed)
