# scan_app/genres.py
import re
from typing import Iterable, List

# Lowercased spelling -> canonical genre name.
GENRE_SYNONYMS = {
    "absurdist": "Absurdist",
    "action": "Action",
    "adventure": "Adventure",
    "animation": "Animation",
    "biography": "Biography",
    "children": "Children",
    "comedy": "Comedy",
    "crime": "Crime",
    "disaster": "Disaster",
    "documentary": "Documentary",
    "drama": "Drama",
    "erotic": "Erotic",
    "family": "Family",
    "fantasy": "Fantasy",
    "film noir": "Film Noir",
    "film-noir": "Film Noir",
    "foreign": "Foreign",
    "game show": "Game Show",
    "game-show": "Game Show",
    "historical": "Historical",
    "history": "History",
    "holiday": "Holiday",
    "horror": "Horror",
    "indie": "Indie",
    "mini series": "Mini Series",
    "mini-series": "Mini Series",
    "music": "Music",
    "musical": "Musical",
    "mystery": "Mystery",
    "news": "News",
    "philosophical": "Philosophical",
    "political": "Political",
    "reality": "Reality",
    "romance": "Romance",
    "satire": "Satire",
    "sci fi": "Sci-Fi",
    "sci-fi": "Sci-Fi",
    "science fiction": "Sci-Fi",
    "science-fiction": "Sci-Fi",
    "short": "Short",
    "soap": "Soap",
    "sport": "Sports",
    "sports": "Sports",
    "sports film": "Sports",
    "sports-film": "Sports",
    "surreal": "Surreal",
    "suspense": "Suspense",
    "talk show": "Talk Show",
    "talk-show": "Talk Show",
    "telenovela": "Telenovela",
    "thriller": "Thriller",
    "tv movie": "TV Movie",
    "tv-movie": "TV Movie",
    "urban": "Urban",
    "war": "War",
    "western": "Western",
}

_SPLIT_RE = re.compile(r'[,/]')

def normalize_genre(genre: str) -> str:
    """Canonical name for a single genre; unknown genres pass through unchanged."""
    return GENRE_SYNONYMS.get(genre.lower(), genre)

def normalize_genres(values: Iterable[str]) -> List[str]:
    """
    Splits combined values ("Sci-Fi, Drama", "Action/Adventure"), trims them,
    maps each through the synonym table and returns them sorted and deduplicated.
    """
    result = set()
    for value in values:
        if not value:
            continue
        for part in _SPLIT_RE.split(value):
            part = part.strip()
            if part:
                result.add(normalize_genre(part))
    return sorted(result)
