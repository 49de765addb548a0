# scan_app/enums.py
from enum import Enum, auto

class Lifecycle(Enum):
    """
    State of a child record (thumbnail or episode) during one rescan.
    Every record ends a merge in exactly one of these states.
    """
    NEW = auto()        # First seen in this scan
    UNCHANGED = auto()  # Known from the previous scan and found again
    DELETED = auto()    # Known from the previous scan but not found again

    def __str__(self):
        return self.name.replace("_", " ").title()


class CollectionType(Enum):
    MOVIES = "movies"
    SHOWS = "shows"

    @classmethod
    def from_config(cls, value: str) -> "CollectionType":
        v = value.strip().lower()
        if v in ("movies", "movie"):
            return cls.MOVIES
        if v in ("shows", "show", "tvshows", "tvseries"):
            return cls.SHOWS
        raise ValueError(f"Unknown collection type '{value}' (expected 'movies' or 'shows')")

    def __str__(self):
        return self.value


class NfoType(Enum):
    MOVIE = "movie"
    TVSHOW = "tvshow"
    EPISODE = "episodedetails"
    UNKNOWN = "unknown"

    @classmethod
    def from_root_tag(cls, tag: str) -> "NfoType":
        for member in cls:
            if member.value == tag:
                return member
        return cls.UNKNOWN


class ScanOutcome(Enum):
    """Per-directory outcome of a collection scan, used for summaries and logging."""
    CREATED = auto()    # New item inserted
    UPDATED = auto()    # Existing item rescanned and saved
    UNCHANGED = auto()  # Nothing newer than the stored item, rescan skipped
    SKIPPED = auto()    # Directory not accepted and nothing stored for it
    DELETED = auto()    # Stored item marked deleted
    FAILED = auto()     # Unexpected error while scanning this directory

    def __str__(self):
        return self.name.replace("_", " ").title()
