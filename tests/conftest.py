# tests/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Ensure the app package is findable by pytest by adding the project root to the path
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from scan_app.enums import CollectionType
from scan_app.models import Collection

MOVIE_NFO = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<movie>
  <title>Blade Runner</title>
  <originaltitle>Blade Runner</originaltitle>
  <plot>A blade runner must pursue four replicants.</plot>
  <runtime>117</runtime>
  <genre>Sci-Fi / Thriller</genre>
  <year>1982</year>
  <uniqueid type="imdb" default="true">tt0083658</uniqueid>
</movie>
"""

TVSHOW_NFO = """<?xml version="1.0" encoding="UTF-8"?>
<tvshow>
  <title>The Expanse</title>
  <status>Ended</status>
  <premiered>2015-12-14</premiered>
  <genre>science fiction</genre>
</tvshow>
"""

EPISODE_NFO = """<?xml version="1.0" encoding="UTF-8"?>
<episodedetails>
  <title>Dulcinea</title>
  <season>1</season>
  <episode>1</episode>
  <aired>2015-12-14</aired>
  <runtime>0:44</runtime>
</episodedetails>
"""


def write_file(path: Path, content="x", mtime: float = None) -> Path:
    """Creates a file (and its parents). Optional mtime in unix seconds."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def make_file():
    return write_file


@pytest.fixture
def movies_collection(tmp_path: Path) -> Collection:
    root = tmp_path / "movies"
    root.mkdir()
    return Collection(name="Movies", type=CollectionType.MOVIES, collection_id=1, directory=root)


@pytest.fixture
def shows_collection(tmp_path: Path) -> Collection:
    root = tmp_path / "shows"
    root.mkdir()
    return Collection(name="Shows", type=CollectionType.SHOWS, collection_id=2, directory=root)


@pytest.fixture
def movie_dir(movies_collection: Collection) -> Path:
    """A complete movie directory: video, NFO, two images and a subtitle."""
    d = movies_collection.directory / "Blade Runner (1982)"
    write_file(d / "Blade Runner.mkv", b"video-data")
    write_file(d / "Blade Runner.nfo", MOVIE_NFO)
    write_file(d / "Blade Runner-poster.jpg", b"poster")
    write_file(d / "Blade Runner-fanart.jpg", b"fanart")
    write_file(d / "Blade Runner.en.srt", "1\n00:00:01,000 --> 00:00:02,000\nHi\n")
    write_file(d / ".hidden.jpg", b"hidden")
    return d


@pytest.fixture
def show_dir(shows_collection: Collection) -> Path:
    """A show with two seasons, show-level and season images, and episode sidecars."""
    d = shows_collection.directory / "The Expanse"
    write_file(d / "tvshow.nfo", TVSHOW_NFO)
    write_file(d / "poster.jpg", b"show-poster")
    write_file(d / "season01-poster.jpg", b"season-1-poster")
    write_file(d / "S01" / "expanse.s01e01.mkv", b"ep1")
    write_file(d / "S01" / "expanse.s01e01.nfo", EPISODE_NFO)
    write_file(d / "S01" / "expanse.s01e01-thumb.jpg", b"ep1-thumb")
    write_file(d / "S01" / "expanse.s01e02.mkv", b"ep2")
    write_file(d / "S02" / "expanse.s02e01.mkv", b"ep3")
    write_file(d / "S02" / "expanse.s02e01.nl.srt", "1\n")
    return d


class CountingProbe:
    """Video probe test double that records which files it was asked about."""
    def __init__(self, info=None):
        self.info = info
        self.calls = []

    async def probe(self, path):
        self.calls.append(Path(path).name)
        return self.info


@pytest.fixture
def counting_probe():
    return CountingProbe()
