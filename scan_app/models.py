# scan_app/models.py
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Tuple, ClassVar

from .enums import Lifecycle, CollectionType, NfoType

@dataclass(frozen=True)
class FileIdentity:
    """
    Cheap change-detection key for a file or directory.
    Two identities are equal iff path, inode, size and mtime all match.
    """
    relative_path: str # Relative to the item directory (or collection root for the item directory itself)
    inode: int
    size: int
    modified_time: int # Unix time in milliseconds

    @property
    def name(self) -> str:
        return self.relative_path.rsplit('/', 1)[-1]

    @property
    def extension(self) -> str:
        name = self.name
        return name.rsplit('.', 1)[-1].lower() if '.' in name else ''


@dataclass
class Rating:
    name: str = "default"
    value: Optional[float] = None
    votes: Optional[int] = None
    max: Optional[int] = None
    default: bool = False

@dataclass
class UniqueId:
    type: str
    value: str
    default: bool = False

@dataclass
class Actor:
    name: str
    role: Optional[str] = None
    order: Optional[int] = None
    thumb: Optional[str] = None


@dataclass
class ItemMetadata:
    """Metadata fields shared by movies, shows and episodes."""
    title: Optional[str] = None
    plot: Optional[str] = None
    tagline: Optional[str] = None
    ratings: List[Rating] = field(default_factory=list)
    unique_ids: List[UniqueId] = field(default_factory=list)
    actors: List[Actor] = field(default_factory=list)
    credits: List[str] = field(default_factory=list)
    directors: List[str] = field(default_factory=list)
    original_title: Optional[str] = None
    sort_title: Optional[str] = None
    countries: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    studios: List[str] = field(default_factory=list)
    premiered: Optional[str] = None # YYYY-MM-DD
    mpaa: Optional[str] = None


@dataclass
class NfoDocument:
    """Parsed and normalized content of one NFO sidecar, independent of any item."""
    nfo_type: NfoType = NfoType.UNKNOWN
    metadata: ItemMetadata = field(default_factory=ItemMetadata)
    runtime: Optional[int] = None # Minutes
    year: Optional[int] = None
    status: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    aired: Optional[str] = None
    display_season: Optional[int] = None
    display_episode: Optional[int] = None


@dataclass
class Thumbnail:
    image_id: int
    file: FileIdentity
    path: str # Served path, /api/image/{collection_id}/{owner_id}/{image_id}.{ext}
    aspect: str
    season: Optional[str] = None # "all", "specials" or a trimmed season numeral
    qualified: bool = False # Matched through a hyphenated qualifier (e.g. "-poster")
    width: Optional[int] = None
    height: Optional[int] = None
    quality: Optional[int] = None
    state: Lifecycle = Lifecycle.NEW


@dataclass
class Subtitle:
    file: FileIdentity
    lang: str
    format: str


@dataclass
class AudioTrack:
    track_id: Optional[int] = None
    codec: Optional[str] = None
    channels: Optional[int] = None
    language: Optional[str] = None
    commentary: bool = False

@dataclass
class SubtitleTrack:
    track_id: Optional[int] = None
    codec: Optional[str] = None
    language: Optional[str] = None
    forced: bool = False
    sdh: bool = False
    commentary: bool = False

@dataclass
class VideoTrack:
    track_id: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None

@dataclass
class VideoInfo:
    audio_tracks: List[AudioTrack] = field(default_factory=list)
    subtitle_tracks: List[SubtitleTrack] = field(default_factory=list)
    video_track: Optional[VideoTrack] = None


@dataclass
class Episode:
    id: Optional[str] = None
    tvshow_id: Optional[str] = None
    collection_id: int = 0
    directory: Optional[FileIdentity] = None # Season subdirectory, or the show directory itself
    state: Lifecycle = Lifecycle.NEW
    metadata: ItemMetadata = field(default_factory=ItemMetadata)
    aired: Optional[str] = None
    runtime: Optional[int] = None
    display_season: Optional[int] = None
    display_episode: Optional[int] = None
    video_file: Optional[FileIdentity] = None
    video_info: Optional[VideoInfo] = None
    season_number: int = 0
    episode_number: int = 0
    double: bool = False
    nfo_file: Optional[FileIdentity] = None
    date_added: Optional[str] = None
    last_modified: int = 0
    thumbnails: List[Thumbnail] = field(default_factory=list)
    subtitles: List[Subtitle] = field(default_factory=list)

    @property
    def deleted(self) -> bool:
        return self.state == Lifecycle.DELETED

    @property
    def base(self) -> Optional[str]:
        """Video path without extension, including any season subdirectory."""
        if self.video_file is None:
            return None
        return self.video_file.relative_path.rsplit('.', 1)[0]

    @property
    def name(self) -> str:
        """Short episode designation such as '3x04', used when there is no title."""
        return f"{self.season_number}x{self.episode_number:02d}"


@dataclass
class Season:
    season_number: int
    episodes: List[Episode] = field(default_factory=list)


@dataclass
class MediaItem:
    item_type: ClassVar[str] = "item"

    id: Optional[str] = None
    collection_id: int = 0
    directory: Optional[FileIdentity] = None # Relative to the collection root
    deleted: bool = False
    last_modified: int = 0 # Unix ms
    date_added: Optional[str] = None # YYYY-MM-DD
    title: str = ""
    nfo_file: Optional[FileIdentity] = None
    metadata: ItemMetadata = field(default_factory=ItemMetadata)
    thumbnails: List[Thumbnail] = field(default_factory=list)

    @property
    def dirname(self) -> Optional[str]:
        return self.directory.relative_path if self.directory else None


@dataclass
class Movie(MediaItem):
    item_type: ClassVar[str] = "movie"

    year: Optional[int] = None
    video_file: Optional[FileIdentity] = None
    video_info: Optional[VideoInfo] = None
    runtime: Optional[int] = None
    subtitles: List[Subtitle] = field(default_factory=list)


@dataclass
class TVShow(MediaItem):
    item_type: ClassVar[str] = "tvshow"

    status: Optional[str] = None
    seasons: List[Season] = field(default_factory=list)

    def all_episodes(self) -> List[Episode]:
        return [ep for season in self.seasons for ep in season.episodes]


@dataclass
class Collection:
    name: str
    type: CollectionType
    collection_id: int
    directory: Path
    items: Dict[str, MediaItem] = field(default_factory=dict) # In-memory cache, keyed by item id


@dataclass
class DeletionSet:
    """Records the scan marked deleted. The caller decides whether to archive or hard-delete them."""
    episodes: List[Episode] = field(default_factory=list)
    thumbnails: List[Tuple[str, Thumbnail]] = field(default_factory=list) # (owner id, thumbnail)

    def is_empty(self) -> bool:
        return not self.episodes and not self.thumbnails

    def add_thumbnails(self, owner_id: Optional[str], thumbs: List[Thumbnail]):
        self.thumbnails.extend((owner_id or "", t) for t in thumbs)


@dataclass
class ScanResult:
    item: Optional[MediaItem] # None when the directory was not accepted
    deletions: DeletionSet = field(default_factory=DeletionSet)
    renamed: bool = False
