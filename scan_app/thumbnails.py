# scan_app/thumbnails.py
import logging
from typing import List, Optional

from .enums import Lifecycle
from .models import FileIdentity, Thumbnail
from .utils import served_image_path

log = logging.getLogger(__name__)

class ThumbnailReconciler:
    """
    Maintains the thumbnail list of one owner (a movie, show or episode) across a rescan.

    Usage per scan: `begin_rescan()`, then `add()` for every image found, then
    `finalize()` once, which returns the thumbnails that are now deleted.
    """
    def __init__(self, collection_id: int, owner_id: Optional[str], thumbnails: List[Thumbnail]):
        self.collection_id = collection_id
        self.owner_id = owner_id
        self.thumbnails = thumbnails # Mutated in place

    def begin_rescan(self):
        """Assume every known thumbnail is gone until the directory walk finds it again."""
        for thumb in self.thumbnails:
            thumb.state = Lifecycle.DELETED

    def _next_image_id(self) -> int:
        return max((t.image_id for t in self.thumbnails), default=0) + 1

    def add(self, file: FileIdentity, aspect: str, season: Optional[str] = None, qualified: bool = False) -> Thumbnail:
        for thumb in self.thumbnails:
            if thumb.file == file:
                thumb.state = Lifecycle.UNCHANGED
                return thumb
        image_id = self._next_image_id()
        thumb = Thumbnail(
            image_id=image_id,
            file=file,
            path=served_image_path(self.collection_id, self.owner_id, image_id, file.extension),
            aspect=aspect,
            season=season,
            qualified=qualified,
            state=Lifecycle.NEW,
        )
        self.thumbnails.append(thumb)
        log.debug(f"New thumbnail {image_id} ({aspect}, season={season}) for {self.owner_id}: {file.relative_path}")
        return thumb

    def finalize(self) -> List[Thumbnail]:
        """
        Drops bare variants shadowed by a qualified one with the same aspect and season,
        then removes deleted thumbnails from the list and returns them.
        """
        live = [t for t in self.thumbnails if t.state != Lifecycle.DELETED]
        qualified_keys = {(t.aspect, t.season) for t in live if t.qualified}
        discarded = set()
        for thumb in live:
            if thumb.qualified or (thumb.aspect, thumb.season) not in qualified_keys:
                continue
            if thumb.state == Lifecycle.NEW:
                discarded.add(id(thumb))
            else:
                thumb.state = Lifecycle.DELETED

        removed = [t for t in self.thumbnails if t.state == Lifecycle.DELETED]
        self.thumbnails[:] = [
            t for t in self.thumbnails
            if t.state != Lifecycle.DELETED and id(t) not in discarded
        ]
        if removed:
            log.debug(f"{len(removed)} thumbnail(s) of {self.owner_id} marked deleted.")
        return removed
