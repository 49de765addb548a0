# tests/test_reconciler.py
import logging
import os
from pathlib import Path

import aiofiles.os
import pytest

from scan_app.enums import Lifecycle
from scan_app.models import Movie, TVShow, VideoInfo, VideoTrack
from scan_app.reconciler import ReconciliationEngine

from conftest import write_file, MOVIE_NFO, CountingProbe

MOVIE_DIR = "Blade Runner (1982)"
SHOW_DIR = "The Expanse"


@pytest.fixture
def engine(counting_probe):
    return ReconciliationEngine(probe=counting_probe)


# --- Movies ---

@pytest.mark.asyncio
async def test_new_movie(engine, movies_collection, movie_dir):
    result = await engine.reconcile(movies_collection, MOVIE_DIR)
    movie = result.item

    assert isinstance(movie, Movie)
    assert len(movie.id) == 32
    assert movie.collection_id == 1
    assert movie.dirname == MOVIE_DIR
    assert movie.title == "Blade Runner"
    assert movie.year == 1982
    assert movie.runtime == 117
    assert movie.metadata.genres == ["Sci-Fi", "Thriller"]
    assert movie.video_file.relative_path == "Blade Runner.mkv"
    assert movie.nfo_file.relative_path == "Blade Runner.nfo"
    assert sorted((t.aspect, t.qualified) for t in movie.thumbnails) == [("fanart", True), ("poster", True)]
    assert all(t.path.startswith(f"/api/image/1/{movie.id}/") for t in movie.thumbnails)
    assert [(s.lang, s.format) for s in movie.subtitles] == [("en", "srt")]
    assert movie.date_added is not None
    assert movie.last_modified > 0
    assert not movie.deleted
    assert result.renamed is False
    assert result.deletions.is_empty()


@pytest.mark.asyncio
async def test_rescan_unchanged_movie_is_idempotent(engine, movies_collection, movie_dir, counting_probe):
    first = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    second_result = await engine.reconcile(movies_collection, MOVIE_DIR, previous=first)
    second = second_result.item

    assert second is not first
    assert second.id == first.id
    assert second.metadata == first.metadata
    assert second.last_modified == first.last_modified
    assert second.date_added == first.date_added
    assert [t.image_id for t in second.thumbnails] == [t.image_id for t in first.thumbnails]
    assert all(t.state == Lifecycle.UNCHANGED for t in second.thumbnails)
    assert second.subtitles == first.subtitles
    assert second_result.deletions.is_empty()
    assert counting_probe.calls == ["Blade Runner.mkv"] # Probed once, on first sight
    # The previous item is never modified
    assert all(t.state == Lifecycle.NEW for t in first.thumbnails)


@pytest.mark.asyncio
async def test_movie_without_nfo_uses_directory_name(engine, movies_collection):
    write_file(movies_collection.directory / "Heat (1995)" / "heat.mkv")
    movie = (await engine.reconcile(movies_collection, "Heat (1995)")).item

    assert movie.title == "Heat"
    assert movie.year == 1995
    assert movie.nfo_file is None


@pytest.mark.asyncio
async def test_movie_nfo_preference(engine, movies_collection):
    d = movies_collection.directory / "Film"
    write_file(d / "film.mkv")
    write_file(d / "movie.nfo", "<movie><title>From movie.nfo</title></movie>")
    write_file(d / "aaa.nfo", "<movie><title>From aaa.nfo</title></movie>")
    movie = (await engine.reconcile(movies_collection, "Film")).item
    assert movie.title == "From movie.nfo"

    write_file(d / "film.nfo", "<movie><title>From film.nfo</title></movie>")
    movie = (await engine.reconcile(movies_collection, "Film", previous=movie)).item
    assert movie.title == "From film.nfo"


@pytest.mark.asyncio
async def test_qualified_poster_beats_bare_image(engine, movies_collection):
    d = movies_collection.directory / "Film"
    write_file(d / "film.mkv")
    write_file(d / "film.jpg", b"bare")
    movie = (await engine.reconcile(movies_collection, "Film")).item
    assert [(t.file.name, t.aspect) for t in movie.thumbnails] == [("film.jpg", "poster")]

    write_file(d / "film-poster.jpg", b"qualified")
    result = await engine.reconcile(movies_collection, "Film", previous=movie)

    assert [t.file.name for t in result.item.thumbnails] == ["film-poster.jpg"]
    assert [(owner, t.file.name) for owner, t in result.deletions.thumbnails] == [(movie.id, "film.jpg")]


@pytest.mark.asyncio
async def test_removed_image_is_reported_deleted(engine, movies_collection, movie_dir):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    (movie_dir / "Blade Runner-fanart.jpg").unlink()

    result = await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie)

    assert [t.aspect for t in result.item.thumbnails] == ["poster"]
    assert len(result.deletions.thumbnails) == 1
    assert result.deletions.thumbnails[0][1].state == Lifecycle.DELETED


@pytest.mark.asyncio
async def test_nfo_only_directory_rejected_until_image_added(engine, movies_collection):
    d = movies_collection.directory / "Blade Runner (1982)"
    write_file(d / "movie.nfo", MOVIE_NFO)

    assert (await engine.reconcile(movies_collection, MOVIE_DIR)).item is None

    write_file(d / "poster.jpg", b"poster")
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    assert movie is not None
    assert movie.video_file is None
    assert [t.aspect for t in movie.thumbnails] == ["poster"]


@pytest.mark.asyncio
async def test_tvshow_nfo_in_movie_directory_is_rejected(engine, movies_collection):
    d = movies_collection.directory / "Oops"
    write_file(d / "tvshow.nfo", "<tvshow><title>Oops</title></tvshow>")
    write_file(d / "oops.mkv")

    assert (await engine.reconcile(movies_collection, "Oops")).item is None


@pytest.mark.asyncio
async def test_missing_directory_gives_no_item(engine, movies_collection):
    result = await engine.reconcile(movies_collection, "Not There")
    assert result.item is None
    assert result.deletions.is_empty()


@pytest.mark.asyncio
async def test_rename_keeps_id_and_forces_last_modified(engine, movies_collection, movie_dir, mocker):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    new_name = "Blade Runner - Final Cut (1982)"
    os.rename(movie_dir, movies_collection.directory / new_name)
    mocker.patch("scan_app.reconciler.now_ms", return_value=4242)

    result = await engine.reconcile(movies_collection, new_name, previous=movie)

    assert result.renamed is True
    assert result.item.id == movie.id
    assert result.item.dirname == new_name
    assert result.item.last_modified == 4242
    assert [t.image_id for t in result.item.thumbnails] == [t.image_id for t in movie.thumbnails]


@pytest.mark.asyncio
async def test_nfo_parse_failure_keeps_previous_metadata(engine, movies_collection, movie_dir, caplog):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    write_file(movie_dir / "Blade Runner.nfo", "<movie><title>Broken")

    with caplog.at_level(logging.WARNING, logger="scan_app.builder"):
        result = await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie)

    assert result.item.title == "Blade Runner"
    assert result.item.metadata == movie.metadata
    assert result.item.nfo_file == movie.nfo_file
    assert "Failed to parse NFO" in caplog.text


@pytest.mark.asyncio
async def test_unchanged_nfo_is_not_reparsed(engine, movies_collection, movie_dir, mocker):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    mock_read = mocker.patch("scan_app.builder.read_nfo")

    result = await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie)

    mock_read.assert_not_called()
    assert result.item.title == "Blade Runner"


@pytest.mark.asyncio
async def test_video_info_from_probe(movies_collection, movie_dir):
    info = VideoInfo(video_track=VideoTrack(track_id=1, width=1920, height=1080, codec="h264"))
    engine = ReconciliationEngine(probe=CountingProbe(info))
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    assert movie.video_info.video_track.width == 1920


@pytest.mark.asyncio
async def test_only_nfo_leaves_files_alone(engine, movies_collection, movie_dir):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    write_file(movie_dir / "Blade Runner-banner.jpg", b"banner")
    write_file(movie_dir / "Blade Runner.nfo", MOVIE_NFO.replace("<title>Blade Runner</title>", "<title>Blade Runner (Director's Cut)</title>"))

    updated = (await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie, only_nfo=True)).item

    assert updated.title == "Blade Runner (Director's Cut)"
    assert len(updated.thumbnails) == len(movie.thumbnails)
    assert updated.video_file == movie.video_file


# --- TV shows ---

@pytest.mark.asyncio
async def test_new_show(engine, shows_collection, show_dir):
    show = (await engine.reconcile(shows_collection, SHOW_DIR)).item

    assert isinstance(show, TVShow)
    assert show.title == "The Expanse"
    assert show.status == "Ended"
    assert sorted((t.aspect, t.season or "") for t in show.thumbnails) == [("poster", ""), ("poster", "1")]
    assert [s.season_number for s in show.seasons] == [1, 2]
    s1 = show.seasons[0].episodes
    assert [(e.season_number, e.episode_number) for e in s1] == [(1, 1), (1, 2)]
    assert s1[0].metadata.title == "Dulcinea"
    assert s1[0].aired == "2015-12-14"
    assert s1[0].runtime == 44
    assert [t.aspect for t in s1[0].thumbnails] == ["thumb"]
    assert s1[0].directory.relative_path == "S01"
    assert s1[1].metadata.title == "1x02"
    assert all(e.tvshow_id == show.id and e.state == Lifecycle.NEW for e in show.all_episodes())
    s2e1 = show.seasons[1].episodes[0]
    assert [s.lang for s in s2e1.subtitles] == ["nl"]


@pytest.mark.asyncio
async def test_rescan_show_keeps_episode_ids(engine, shows_collection, show_dir):
    first = (await engine.reconcile(shows_collection, SHOW_DIR)).item
    result = await engine.reconcile(shows_collection, SHOW_DIR, previous=first)
    second = result.item

    assert [e.id for e in second.all_episodes()] == [e.id for e in first.all_episodes()]
    assert all(e.state == Lifecycle.UNCHANGED for e in second.all_episodes())
    assert second.last_modified == first.last_modified
    assert result.deletions.is_empty()


@pytest.mark.asyncio
async def test_removed_episode_is_deleted_and_empty_season_dropped(engine, shows_collection, show_dir):
    first = (await engine.reconcile(shows_collection, SHOW_DIR)).item
    gone_id = first.seasons[1].episodes[0].id
    (show_dir / "S02" / "expanse.s02e01.mkv").unlink()

    result = await engine.reconcile(shows_collection, SHOW_DIR, previous=first)

    assert [s.season_number for s in result.item.seasons] == [1]
    assert [(e.id, e.state) for e in result.deletions.episodes] == [(gone_id, Lifecycle.DELETED)]


@pytest.mark.asyncio
async def test_new_episode_added(engine, shows_collection, show_dir):
    first = (await engine.reconcile(shows_collection, SHOW_DIR)).item
    write_file(show_dir / "S02" / "expanse.s02e02.mkv", b"ep4")

    second = (await engine.reconcile(shows_collection, SHOW_DIR, previous=first)).item

    states = {(e.season_number, e.episode_number): e.state for e in second.all_episodes()}
    assert states[(2, 2)] == Lifecycle.NEW
    assert states[(1, 1)] == Lifecycle.UNCHANGED


@pytest.mark.asyncio
async def test_episode_keeps_only_qualified_poster(engine, shows_collection):
    d = shows_collection.directory / "Show"
    write_file(d / "S01" / "show.s01e01.mp4")
    write_file(d / "S01" / "show.s01e01-poster.jpg", b"qualified")
    write_file(d / "S01" / "show.s01e01.jpg", b"bare")

    show = (await engine.reconcile(shows_collection, "Show")).item

    episode = show.all_episodes()[0]
    assert [(t.file.relative_path, t.aspect, t.qualified) for t in episode.thumbnails] == [
        ("S01/show.s01e01-poster.jpg", "poster", True),
    ]
    assert episode.thumbnails[0].path == f"/api/image/2/{episode.id}/1.jpg"


@pytest.mark.asyncio
async def test_duplicate_episode_prefers_matching_season_directory(engine, shows_collection):
    d = shows_collection.directory / "Show"
    write_file(d / "A.s01e01.mkv", b"loose")
    write_file(d / "Season 1" / "B.s01e01.mkv", b"filed")

    show = (await engine.reconcile(shows_collection, "Show")).item

    episodes = show.all_episodes()
    assert len(episodes) == 1
    assert episodes[0].video_file.relative_path == "Season 1/B.s01e01.mkv"


@pytest.mark.asyncio
async def test_show_without_episodes_or_images_is_rejected(engine, shows_collection, make_file):
    make_file(shows_collection.directory / "Empty Show" / "tvshow.nfo", "<tvshow><title>Empty</title></tvshow>")
    assert (await engine.reconcile(shows_collection, "Empty Show")).item is None


@pytest.mark.asyncio
async def test_non_episode_videos_are_ignored(engine, shows_collection, make_file):
    d = shows_collection.directory / "Show"
    make_file(d / "trailer.mkv")
    make_file(d / "show.s01e01.mkv")

    show = (await engine.reconcile(shows_collection, "Show")).item

    assert [e.video_file.relative_path for e in show.all_episodes()] == ["show.s01e01.mkv"]
    assert show.title == "Show"


@pytest.mark.asyncio
async def test_renamed_show_directory_forces_last_modified(engine, shows_collection, show_dir, mocker):
    first = (await engine.reconcile(shows_collection, SHOW_DIR)).item
    os.rename(show_dir, shows_collection.directory / "The Expanse (2015)")
    mocker.patch("scan_app.reconciler.now_ms", return_value=first.last_modified + 1000)

    result = await engine.reconcile(shows_collection, "The Expanse (2015)", previous=first)

    assert result.renamed is True
    assert result.item.last_modified == first.last_modified + 1000
    assert [e.id for e in result.item.all_episodes()] == [e.id for e in first.all_episodes()]
    assert result.deletions.is_empty()


@pytest.mark.asyncio
async def test_only_nfo_new_directory_gets_full_build(engine, movies_collection, movie_dir):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR, only_nfo=True)).item

    assert movie.video_file is not None
    assert len(movie.thumbnails) == 2


@pytest.mark.asyncio
async def test_only_season_directories_are_walked(engine, shows_collection):
    d = shows_collection.directory / "Show"
    write_file(d / "show.s01e01.mkv", b"episode")
    write_file(d / "Sample" / "show.s01e01.sample.mkv", b"sample")
    write_file(d / "S01" / "show.s01e02.mkv", b"episode")
    write_file(d / "Extras" / "behind.the.scenes.s01e05.mkv", b"extra")

    show = (await engine.reconcile(shows_collection, "Show")).item

    assert [e.video_file.relative_path for e in show.all_episodes()] == ["show.s01e01.mkv", "S01/show.s01e02.mkv"]


@pytest.mark.asyncio
async def test_unreadable_season_directory_counts_as_empty(engine, shows_collection, show_dir, mocker):
    real_listdir = aiofiles.os.listdir

    async def listdir(path, *args, **kwargs):
        if Path(path).name == "S02":
            raise PermissionError(13, "Permission denied", str(path))
        return await real_listdir(path, *args, **kwargs)
    mocker.patch("aiofiles.os.listdir", new=listdir)

    show = (await engine.reconcile(shows_collection, SHOW_DIR)).item

    assert [s.season_number for s in show.seasons] == [1]
    assert show.title == "The Expanse"


@pytest.mark.asyncio
async def test_unreadable_nfo_keeps_previous_metadata(engine, movies_collection, movie_dir, mocker):
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    write_file(movie_dir / "Blade Runner.nfo", MOVIE_NFO.replace("<title>Blade Runner</title>", "<title>Changed</title>"))
    mocker.patch("scan_app.nfo_parser.aiofiles.open", side_effect=PermissionError(13, "Permission denied"))

    updated = (await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie)).item

    assert updated.title == "Blade Runner"
    assert updated.metadata == movie.metadata
    assert updated.nfo_file == movie.nfo_file
    assert updated.video_file == movie.video_file
    assert len(updated.thumbnails) == 2


@pytest.mark.asyncio
async def test_unreadable_nfo_on_first_scan_only_drops_the_nfo(engine, movies_collection, movie_dir, mocker):
    mocker.patch("scan_app.nfo_parser.aiofiles.open", side_effect=PermissionError(13, "Permission denied"))

    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item

    assert movie.nfo_file is None
    assert (movie.title, movie.year) == ("Blade Runner", 1982)
    assert movie.video_file.relative_path == "Blade Runner.mkv"


@pytest.mark.asyncio
async def test_repaired_nfo_is_parsed_again(engine, movies_collection, movie_dir):
    nfo = movie_dir / "Blade Runner.nfo"
    movie = (await engine.reconcile(movies_collection, MOVIE_DIR)).item
    write_file(nfo, "<movie><title>Broken")
    broken = (await engine.reconcile(movies_collection, MOVIE_DIR, previous=movie)).item
    assert broken.nfo_file == movie.nfo_file

    write_file(nfo, MOVIE_NFO.replace("<title>Blade Runner</title>", "<title>Blade Runner: The Final Cut</title>"))
    fixed = (await engine.reconcile(movies_collection, MOVIE_DIR, previous=broken)).item

    assert fixed.title == "Blade Runner: The Final Cut"
    assert fixed.nfo_file != movie.nfo_file
    assert fixed.nfo_file.relative_path == "Blade Runner.nfo"
    assert fixed.nfo_file.size == os.stat(nfo).st_size
