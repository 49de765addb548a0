# scan_app/builder.py
"""
Builds Movie and TVShow records from a directory listing.

The builder works on a draft item (a fresh item, or a deep copy of the
previously stored one) and mutates it in place. Item-level bookkeeping such as
timestamps, rename handling and acceptance is done by the reconciler.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Tuple, Callable, Any

from . import classifier
from .enums import Lifecycle
from .exceptions import FileAccessError, NfoParseError
from .models import (
    Collection, Movie, TVShow, Season, Episode, ItemMetadata, NfoDocument,
    Subtitle, DeletionSet, FileIdentity,
)
from .nfo_parser import read_nfo
from .thumbnails import ThumbnailReconciler
from .utils import split_extension, normalize_language, title_year_from_dirname, date_from_ms, new_item_id
from .video_probe import VideoProbe, NullProbe
from .walker import DirListing, DirEntry

log = logging.getLogger(__name__)

# --- Per-entity NFO merge policies ---

def merge_movie_nfo(movie: Movie, doc: NfoDocument):
    """NFO metadata replaces the stored metadata; the directory name stays the year fallback."""
    movie.metadata = doc.metadata
    movie.runtime = doc.runtime
    year = doc.year
    if year is None and doc.metadata.premiered and doc.metadata.premiered[:4].isdigit():
        year = int(doc.metadata.premiered[:4])
    if year is not None:
        movie.year = year

def merge_tvshow_nfo(show: TVShow, doc: NfoDocument):
    show.metadata = doc.metadata
    show.status = doc.status

def merge_episode_nfo(episode: Episode, doc: NfoDocument):
    """Episodes take the common subset of the metadata. Numbering always comes from the filename."""
    src = doc.metadata
    episode.metadata = ItemMetadata(
        title=src.title,
        plot=src.plot,
        tagline=src.tagline,
        ratings=src.ratings,
        unique_ids=src.unique_ids,
        actors=src.actors,
        credits=src.credits,
        directors=src.directors,
    )
    episode.aired = doc.aired
    episode.runtime = doc.runtime
    episode.display_season = doc.display_season
    episode.display_episode = doc.display_episode


@dataclass
class BuildResult:
    accepted_candidate: bool = True # False when the directory cannot hold this item type at all
    nfo_parsed: bool = False
    deletions: DeletionSet = field(default_factory=DeletionSet)


class MediaItemBuilder:
    def __init__(self, collection: Collection, probe: Optional[VideoProbe] = None, only_nfo: bool = False):
        self.collection = collection
        self.probe = probe or NullProbe()
        self.only_nfo = only_nfo

    # --- Shared steps ---

    async def _apply_nfo(self, target: Any, entry: Optional[DirEntry], directory: Path,
                         merge: Callable[[Any, NfoDocument], None]) -> bool:
        """
        Re-parses the NFO only if its identity changed. On failure the previous
        metadata and identity stay, so the next identity change retries it.
        Returns True if the target now carries NFO metadata.
        """
        if entry is None:
            target.nfo_file = None
            return False
        if target.nfo_file == entry.identity:
            log.debug(f"NFO unchanged, not re-parsing: {entry.name}")
            return True
        try:
            doc = await read_nfo(directory / entry.name)
        except NfoParseError as e:
            log.warning(f"Failed to parse NFO, keeping previous metadata: {e}")
            return target.nfo_file is not None
        except FileAccessError as e:
            log.debug(f"NFO not readable, skipping: {e}")
            return target.nfo_file is not None
        merge(target, doc)
        target.nfo_file = entry.identity
        return True

    async def _update_video(self, target: Any, entry: DirEntry, directory: Path):
        if target.video_file == entry.identity:
            return
        target.video_file = entry.identity
        target.video_info = await self.probe.probe(directory / entry.name)

    def _add_sidecar_image(self, rec: ThumbnailReconciler, entry: DirEntry, qualifier: Optional[str]):
        aspect = classifier.sidecar_image_aspect(qualifier)
        if aspect is None:
            log.debug(f"Image '{entry.name}' has no recognized aspect, ignoring.")
            return
        rec.add(entry.identity, aspect, qualified=qualifier is not None)

    @staticmethod
    def _subtitle(entry: DirEntry, qualifier: Optional[str], ext: str) -> Subtitle:
        return Subtitle(file=entry.identity, lang=normalize_language(qualifier), format=ext)

    # --- Movies ---

    async def build_movie(self, movie: Movie, dirname: str, listing: DirListing) -> BuildResult:
        result = BuildResult()
        files = listing.files
        names = listing.files_by_name()
        if 'tvshow.nfo' in names:
            log.debug(f"'{dirname}' contains tvshow.nfo, not a movie directory.")
            result.accepted_candidate = False
            return result

        dir_title, dir_year = title_year_from_dirname(dirname)
        classified = [(e, classifier.classify(e.name)) for e in files]

        if not self.only_nfo:
            video = next((e for e, c in classified if isinstance(c, classifier.Video)), None)
            if video is not None:
                await self._update_video(movie, video, listing.directory)
            else:
                movie.video_file = None
                movie.video_info = None
        base = split_extension(movie.video_file.relative_path)[0] if movie.video_file else None

        nfo_entries = [e for e, c in classified if isinstance(c, classifier.Nfo)]
        nfo_entry = (names.get(f"{base}.nfo") if base else None) or names.get('movie.nfo') or (nfo_entries[0] if nfo_entries else None)
        result.nfo_parsed = await self._apply_nfo(movie, nfo_entry, listing.directory, merge_movie_nfo)

        movie.title = movie.metadata.title or dir_title
        if movie.year is None:
            movie.year = dir_year

        if self.only_nfo:
            return result

        rec = ThumbnailReconciler(self.collection.collection_id, movie.id, movie.thumbnails)
        rec.begin_rescan()
        subtitles = []
        bases = {base} if base else set()
        for entry, c in classified:
            if isinstance(c, classifier.Image):
                if c.aspect_hint:
                    rec.add(entry.identity, c.aspect_hint)
                    continue
                assoc = classifier.associate(c.base, bases)
                if assoc:
                    self._add_sidecar_image(rec, entry, assoc[1])
            elif isinstance(c, classifier.Subtitle):
                assoc = classifier.associate(c.base, bases)
                if assoc:
                    subtitles.append(self._subtitle(entry, assoc[1], c.ext))
        result.deletions.add_thumbnails(movie.id, rec.finalize())
        movie.subtitles = sorted(subtitles, key=lambda s: (s.lang, s.file.relative_path))
        return result

    # --- TV shows ---

    def _new_episode(self, show: TVShow) -> Episode:
        return Episode(id=new_item_id(), tvshow_id=show.id, collection_id=self.collection.collection_id, state=Lifecycle.NEW)

    async def _episode_pass(self, show: TVShow, listing: DirListing, classified: List[Tuple[DirEntry, Any]],
                            previous: Dict[str, Episode]) -> List[Tuple[Episode, Optional[int]]]:
        """Pass 1: one record per episode video, reusing previously known episodes by base."""
        subdir_identities = {e.name: e.identity for e in listing.subdirs}
        found = []
        for entry, c in classified:
            if not isinstance(c, classifier.Video):
                continue
            match = classifier.parse_episode(c.base, c.season_hint)
            if match is None:
                log.debug(f"No episode numbering in '{entry.name}', ignoring.")
                continue
            episode = previous.get(c.base)
            if episode is not None and episode.state == Lifecycle.DELETED:
                episode.state = Lifecycle.UNCHANGED
            else:
                episode = self._new_episode(show)
            episode.tvshow_id = show.id
            episode.season_number = match.season
            episode.episode_number = match.episode
            episode.double = match.double
            subdir = entry.name.rpartition('/')[0]
            episode.directory = subdir_identities.get(subdir) if subdir else listing.identity
            await self._update_video(episode, entry, listing.directory)
            episode.last_modified = entry.identity.modified_time
            if not episode.date_added:
                episode.date_added = date_from_ms(entry.identity.modified_time)
            found.append((episode, c.season_hint))
        return found

    @staticmethod
    def _retain_unique(found: List[Tuple[Episode, Optional[int]]]) -> List[Episode]:
        """
        One episode per (season, episode). The file whose season directory agrees
        with its numbering wins, otherwise the first one in name order.
        """
        chosen: Dict[Tuple[int, int], Tuple[Episode, Optional[int]]] = {}
        for episode, hint in found:
            key = (episode.season_number, episode.episode_number)
            current = chosen.get(key)
            if current is None:
                chosen[key] = (episode, hint)
                continue
            loser = episode
            if current[1] != current[0].season_number and hint == episode.season_number:
                chosen[key] = (episode, hint)
                loser = current[0]
            log.debug(f"Duplicate episode {loser.name}: '{loser.video_file.relative_path}' ignored.")
            if loser.state == Lifecycle.UNCHANGED:
                loser.state = Lifecycle.DELETED
        return [episode for episode, _ in chosen.values()]

    async def _sidecar_pass(self, show: TVShow, listing: DirListing, classified: List[Tuple[DirEntry, Any]],
                            episodes: List[Episode], deletions: DeletionSet):
        """Pass 2: route images, subtitles and NFOs to episodes through the base index."""
        index = {ep.base: ep for ep in episodes}
        reconcilers = {}
        for ep in episodes:
            rec = ThumbnailReconciler(self.collection.collection_id, ep.id, ep.thumbnails)
            rec.begin_rescan()
            reconcilers[ep.base] = rec
        subtitles: Dict[str, List[Subtitle]] = {base: [] for base in index}
        nfos: Dict[str, DirEntry] = {}

        for entry, c in classified:
            if isinstance(c, classifier.Image) and not (c.aspect_hint and '/' not in entry.name):
                assoc = classifier.associate(c.base, index)
                if assoc:
                    self._add_sidecar_image(reconcilers[assoc[0]], entry, assoc[1])
            elif isinstance(c, classifier.Subtitle):
                assoc = classifier.associate(c.base, index)
                if assoc:
                    subtitles[assoc[0]].append(self._subtitle(entry, assoc[1], c.ext))
            elif isinstance(c, classifier.Nfo) and c.base in index:
                nfos[c.base] = entry

        for base, ep in index.items():
            await self._apply_nfo(ep, nfos.get(base), listing.directory, merge_episode_nfo)
            if not ep.metadata.title:
                ep.metadata.title = ep.name
            ep.subtitles = sorted(subtitles[base], key=lambda s: (s.lang, s.file.relative_path))
            deletions.add_thumbnails(ep.id, reconcilers[base].finalize())

    @staticmethod
    def _group_seasons(episodes: List[Episode]) -> List[Season]:
        by_season: Dict[int, List[Episode]] = {}
        for ep in episodes:
            if ep.video_file is None or ep.deleted:
                continue
            by_season.setdefault(ep.season_number, []).append(ep)
        seasons = []
        for number in sorted(by_season):
            eps = sorted(by_season[number], key=lambda e: e.episode_number)
            seasons.append(Season(season_number=number, episodes=eps))
        return seasons

    async def build_show(self, show: TVShow, dirname: str, listing: DirListing) -> BuildResult:
        result = BuildResult()
        files = listing.files
        classified = [(e, classifier.classify(e.name)) for e in files]
        names = listing.files_by_name()
        tvshow_nfo = names.get('tvshow.nfo')
        result.nfo_parsed = await self._apply_nfo(show, tvshow_nfo, listing.directory, merge_tvshow_nfo)
        show.title = show.metadata.title or title_year_from_dirname(dirname)[0]

        if self.only_nfo:
            for ep in show.all_episodes():
                if ep.base is not None:
                    await self._apply_nfo(ep, names.get(f"{ep.base}.nfo"), listing.directory, merge_episode_nfo)
            return result

        rec = ThumbnailReconciler(self.collection.collection_id, show.id, show.thumbnails)
        rec.begin_rescan()
        for entry, c in classified:
            if isinstance(c, classifier.SeasonImage):
                rec.add(entry.identity, c.aspect, season=c.season, qualified=c.qualified)
            elif isinstance(c, classifier.Image) and c.aspect_hint and '/' not in entry.name:
                rec.add(entry.identity, c.aspect_hint)
        result.deletions.add_thumbnails(show.id, rec.finalize())

        previous_episodes = show.all_episodes()
        previous: Dict[str, Episode] = {}
        for ep in previous_episodes:
            ep.state = Lifecycle.DELETED
            if ep.base is not None:
                previous[ep.base] = ep

        found = await self._episode_pass(show, listing, classified, previous)
        episodes = self._retain_unique(found)
        await self._sidecar_pass(show, listing, classified, episodes, result.deletions)

        result.deletions.episodes.extend(ep for ep in previous_episodes if ep.deleted)
        show.seasons = self._group_seasons(episodes)
        return result
