"""
Tests for remotescan.core.records and remotescan.core.track_db.

These tests verify:
- TrackRecord helpers (bitrate/duration setters, URL titles, next playable entry)
- MemoryTrackStore identity map, rename and delete
- SqliteTrackStore schema creation, persistence and playlist membership
"""

from __future__ import annotations

from pathlib import Path

import pytest

from remotescan.core.records import InitialBlock, MemoryTrackStore, TrackRecord
from remotescan.core.track_db import SqliteTrackStore

# =============================================================================
# TrackRecord
# =============================================================================


class TestTrackRecord:
    """Tests for the record helpers."""

    def test_set_bitrate_ignores_empty_values(self) -> None:
        track = TrackRecord(url="http://example.com/a")
        track.set_bitrate(128_000, vbr=True)
        track.set_bitrate(None)
        track.set_bitrate(0)
        assert track.bitrate == 128_000
        assert track.vbr is True

    def test_set_duration_ignores_non_positive(self) -> None:
        track = TrackRecord(url="http://example.com/a")
        track.set_duration(0)
        assert track.duration_seconds is None
        track.set_duration(12.5)
        assert track.duration_seconds == 12.5

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            (None, True),
            ("", True),
            ("http://example.com/live", True),
            ("MMS://example.com/live", True),
            ("Jazz Radio", False),
        ],
    )
    def test_has_url_title(self, title: str | None, expected: bool) -> None:
        assert TrackRecord(url="http://example.com/a", title=title).has_url_title is expected

    def test_set_processor(self) -> None:
        track = TrackRecord(url="http://example.com/a.m4a")
        track.set_processor("mp4", InitialBlock.ALWAYS)
        assert track.processors == {"mp4": InitialBlock.ALWAYS}
        assert track.initial_block_type is InitialBlock.ALWAYS

    def test_next_entry_skips_failed_and_unclassified(self) -> None:
        failed = TrackRecord(url="http://example.com/1", content_type="mp3", error="404 Not Found")
        deleted = TrackRecord(url="http://example.com/2", content_type="mp3", deleted=True)
        pending = TrackRecord(url="http://example.com/3")
        good = TrackRecord(url="http://example.com/4", content_type="aac")

        playlist = TrackRecord(url="http://example.com/list", is_playlist=True)
        playlist.set_tracks([failed, None, deleted, pending, good])

        assert len(playlist.entries) == 4
        assert playlist.next_entry() is good

    def test_next_entry_searches_nested_playlists(self) -> None:
        song = TrackRecord(url="http://example.com/song", content_type="mp3")
        inner = TrackRecord(url="http://example.com/inner", is_playlist=True, entries=[song])
        outer = TrackRecord(url="http://example.com/outer", is_playlist=True, entries=[inner])
        assert outer.next_entry() is song

    def test_next_entry_survives_cycles(self) -> None:
        playlist = TrackRecord(url="http://example.com/loop", is_playlist=True)
        playlist.entries = [playlist]
        assert playlist.next_entry() is None

    def test_to_dict_includes_entries(self) -> None:
        song = TrackRecord(url="http://example.com/song", content_type="mp3", bitrate=128_000)
        playlist = TrackRecord(url="http://example.com/list", is_playlist=True, entries=[song])
        data = playlist.to_dict()
        assert data["url"] == "http://example.com/list"
        assert data["entries"][0]["bitrate"] == 128_000
        assert "initial_block" not in data


# =============================================================================
# MemoryTrackStore
# =============================================================================


class TestMemoryTrackStore:
    """Tests for the in-memory store."""

    async def test_update_or_create_returns_same_record(self) -> None:
        store = MemoryTrackStore()
        first = await store.update_or_create("http://example.com/a")
        second = await store.update_or_create("http://example.com/a", title="A")
        assert first is second
        assert first.title == "A"
        assert first.id == 1
        assert len(store) == 1

    async def test_ids_are_unique(self) -> None:
        store = MemoryTrackStore()
        a = await store.update_or_create("http://example.com/a")
        b = await store.update_or_create("http://example.com/b")
        assert a.id != b.id

    async def test_rename_keeps_identity(self) -> None:
        store = MemoryTrackStore()
        track = await store.update_or_create("mms://example.com/live")
        renamed = await store.rename(track, "http://example.com/live")

        assert renamed is track
        assert "mms://example.com/live" not in store
        assert await store.get("http://example.com/live") is track

    async def test_delete(self) -> None:
        store = MemoryTrackStore()
        track = await store.update_or_create("http://example.com/a")
        await store.delete(track)

        assert track.deleted
        assert await store.get("http://example.com/a") is None

        # updates of deleted records are ignored
        await store.update(track)
        assert len(store) == 0

    async def test_playlist_for_url_converts_in_place(self) -> None:
        store = MemoryTrackStore()
        track = await store.update_or_create("http://example.com/list.pls")
        playlist = await store.playlist_for_url("http://example.com/list.pls")
        assert playlist is track
        assert playlist.is_playlist


# =============================================================================
# SqliteTrackStore
# =============================================================================


class TestSqliteTrackStore:
    """Tests for the aiosqlite-backed store."""

    @pytest.fixture
    async def store(self) -> SqliteTrackStore:
        """Create an in-memory database for testing."""
        store = SqliteTrackStore(":memory:")
        await store.open()
        await store.ensure_schema()
        yield store
        await store.close()

    async def test_open_close(self) -> None:
        """Test basic open/close lifecycle."""
        store = SqliteTrackStore(":memory:")
        assert not store.is_open

        await store.open()
        assert store.is_open

        await store.close()
        assert not store.is_open

    async def test_requires_open(self) -> None:
        """Operations on a closed store raise instead of silently doing nothing."""
        store = SqliteTrackStore(":memory:")
        with pytest.raises(RuntimeError):
            await store.update_or_create("http://example.com/a")

    async def test_update_or_create_assigns_id(self, store: SqliteTrackStore) -> None:
        """Test that new records get a row id and are counted."""
        track = await store.update_or_create("http://example.com/a", title="A")
        assert track.id > 0
        assert await store.count_tracks() == 1

        again = await store.update_or_create("http://example.com/a")
        assert again is track
        assert await store.count_tracks() == 1

    async def test_rename(self, store: SqliteTrackStore) -> None:
        """Test that renaming moves the row and keeps its id."""
        track = await store.update_or_create("mms://example.com/live")
        original_id = track.id

        await store.rename(track, "http://example.com/live")

        assert track.id == original_id
        assert await store.get("mms://example.com/live") is None
        assert await store.get("http://example.com/live") is track
        assert await store.count_tracks() == 1

    async def test_delete(self, store: SqliteTrackStore) -> None:
        """Test that deleting removes the row."""
        track = await store.update_or_create("http://example.com/a")
        await store.delete(track)

        assert track.deleted
        assert await store.get("http://example.com/a") is None
        assert await store.count_tracks() == 0

    async def test_playlist_entries_are_ordered(self, store: SqliteTrackStore) -> None:
        """Test that playlist membership is stored with its order."""
        first = await store.update_or_create("http://example.com/1")
        second = await store.update_or_create("http://example.com/2")

        playlist = await store.playlist_for_url("http://example.com/list.m3u")
        playlist.set_tracks([second, None, first])
        await store.update(playlist)

        assert [e.url for e in playlist.entries] == ["http://example.com/2", "http://example.com/1"]
        assert await store.count_tracks() == 3


class TestSqlitePersistence:
    """Records survive closing and reopening the database file."""

    async def test_round_trip_through_disk(self, tmp_path: Path) -> None:
        db_path = tmp_path / "remote.db"

        store = SqliteTrackStore(db_path)
        await store.open()
        await store.ensure_schema()

        song = await store.update_or_create("http://example.com/song.m4a", title="Song")
        song.content_type = "mp4"
        song.set_bitrate(256_000, vbr=True)
        song.set_duration(180.0)
        song.samplerate = 44100
        song.set_processor("mp4", InitialBlock.ALWAYS)
        await store.update(song)

        playlist = await store.playlist_for_url("http://example.com/list.pls")
        playlist.set_tracks([song])
        await store.update(playlist)
        await store.close()

        store = SqliteTrackStore(db_path)
        await store.open()
        await store.ensure_schema()
        try:
            loaded = await store.get("http://example.com/list.pls")
            assert loaded is not None
            assert loaded.is_playlist
            assert len(loaded.entries) == 1

            entry = loaded.entries[0]
            assert entry.title == "Song"
            assert entry.content_type == "mp4"
            assert entry.bitrate == 256_000
            assert entry.vbr is True
            assert entry.duration_seconds == 180.0
            assert entry.samplerate == 44100
            assert entry.initial_block_type is InitialBlock.ALWAYS

            # identity map: loading the entry directly returns the same object
            assert await store.get("http://example.com/song.m4a") is entry
        finally:
            await store.close()
