"""
SQLite-backed track store.

Goals:
- Same contract as `MemoryTrackStore`, so the scanner does not care which one it gets.
- SQLite + aiosqlite, async/await friendly.
- Records keep their identity inside one process: the store hands out the same
  `TrackRecord` object for a URL until that record is deleted.

Usage:
    store = SqliteTrackStore("remote.db")
    await store.open()
    await store.ensure_schema()
    ... scan ...
    await store.close()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiosqlite

from remotescan.core.db.schema import ensure_schema as ensure_schema_sql
from remotescan.core.records import InitialBlock, TrackRecord

logger = logging.getLogger(__name__)

_COLUMNS: tuple[str, ...] = (
    "url",
    "title",
    "cover",
    "content_type",
    "bitrate",
    "vbr",
    "duration",
    "samplerate",
    "samplesize",
    "channels",
    "audio_offset",
    "audio_size",
    "block_alignment",
    "endian",
    "filesize",
    "redir",
    "error",
    "drm",
    "initial_block_fn",
    "initial_block_type",
    "is_playlist",
)


def _record_to_params(track: TrackRecord) -> dict[str, Any]:
    return {
        "url": track.url,
        "title": track.title,
        "cover": track.cover,
        "content_type": track.content_type,
        "bitrate": track.bitrate,
        "vbr": 1 if track.vbr else 0,
        "duration": track.duration_seconds,
        "samplerate": track.samplerate,
        "samplesize": track.samplesize,
        "channels": track.channels,
        "audio_offset": track.audio_offset,
        "audio_size": track.audio_size,
        "block_alignment": track.block_alignment,
        "endian": track.endian,
        "filesize": track.filesize,
        "redir": track.redir,
        "error": track.error,
        "drm": 1 if track.drm else 0,
        "initial_block_fn": track.initial_block_fn,
        "initial_block_type": track.initial_block_type.value if track.initial_block_type else None,
        "is_playlist": 1 if track.is_playlist else 0,
    }


def _row_to_record(row: aiosqlite.Row) -> TrackRecord:
    block_type = row["initial_block_type"]
    return TrackRecord(
        url=row["url"],
        id=int(row["id"]),
        title=row["title"],
        cover=row["cover"],
        content_type=row["content_type"],
        bitrate=row["bitrate"],
        vbr=bool(row["vbr"]),
        duration_seconds=row["duration"],
        samplerate=row["samplerate"],
        samplesize=row["samplesize"],
        channels=row["channels"],
        audio_offset=row["audio_offset"],
        audio_size=row["audio_size"],
        block_alignment=row["block_alignment"],
        endian=row["endian"],
        filesize=row["filesize"],
        redir=row["redir"],
        error=row["error"],
        drm=bool(row["drm"]),
        initial_block_fn=row["initial_block_fn"],
        initial_block_type=InitialBlock(block_type) if block_type else None,
        is_playlist=bool(row["is_playlist"]),
    )


class SqliteTrackStore:
    """
    Async access layer for persisted remote track records.

    Notes:
    - This class is designed to be injected into the scanner.
    - Connections are not pooled; we keep a single connection.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._identity: dict[str, TrackRecord] = {}

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA foreign_keys = ON;")
        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        self._identity.clear()

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SqliteTrackStore is not open. Call await store.open() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create or migrate schema to current version."""
        await ensure_schema_sql(self._require_conn())

    # ===========================================================================
    # TrackStore contract
    # ===========================================================================

    async def get(self, url: str) -> TrackRecord | None:
        """Return the record for `url`, loading it (and its entries) from disk if needed."""
        track = self._identity.get(url)
        if track is not None:
            return track

        conn = self._require_conn()
        cursor = await conn.execute("SELECT * FROM remote_tracks WHERE url = ?;", (url,))
        row = await cursor.fetchone()
        if row is None:
            return None

        track = _row_to_record(row)
        self._identity[url] = track
        if track.is_playlist:
            track.entries = await self._load_entries(track.id)
        return track

    async def update_or_create(
        self, url: str, *, title: str | None = None, cover: str | None = None
    ) -> TrackRecord:
        track = await self.get(url)
        if track is None:
            track = TrackRecord(url=url)
            self._identity[url] = track
        if title:
            track.title = title
        if cover:
            track.cover = cover
        await self.update(track)
        return track

    async def update(self, track: TrackRecord) -> None:
        """
        Insert or update a record by its URL.

        Playlist entries are rewritten in order. Returns once committed.
        """
        if track.deleted:
            return
        conn = self._require_conn()
        params = _record_to_params(track)

        placeholders = ", ".join(f":{c}" for c in _COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS if c != "url")
        await conn.execute(
            f"""
            INSERT INTO remote_tracks ({", ".join(_COLUMNS)}) VALUES ({placeholders})
            ON CONFLICT(url) DO UPDATE SET {updates}
            """,
            params,
        )

        cursor = await conn.execute("SELECT id FROM remote_tracks WHERE url = ?;", (track.url,))
        row = await cursor.fetchone()
        if row is None:
            raise RuntimeError("Upsert failed: record not found after insert/update.")
        track.id = int(row["id"])
        self._identity[track.url] = track

        if track.is_playlist:
            await conn.execute("DELETE FROM playlist_entries WHERE playlist_id = ?;", (track.id,))
            for position, entry in enumerate(track.entries):
                if entry.deleted:
                    continue
                if not entry.id:
                    await self.update(entry)
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO playlist_entries (playlist_id, position, track_id)
                    VALUES (?, ?, ?)
                    """,
                    (track.id, position, entry.id),
                )

        await conn.commit()

    async def rename(self, track: TrackRecord, new_url: str) -> TrackRecord:
        conn = self._require_conn()
        if self._identity.get(track.url) is track:
            del self._identity[track.url]

        # Last writer wins if another record already owns the new URL.
        existing = await self.get(new_url)
        if existing is not None and existing is not track:
            await self.delete(existing)

        logger.debug("Renaming record #%d: %s -> %s", track.id, track.url, new_url)
        track.url = new_url
        if track.id:
            await conn.execute(
                "UPDATE remote_tracks SET url = ? WHERE id = ?;", (new_url, track.id)
            )
            await conn.commit()
        self._identity[new_url] = track
        return track

    async def delete(self, track: TrackRecord) -> None:
        conn = self._require_conn()
        if self._identity.get(track.url) is track:
            del self._identity[track.url]
        track.deleted = True
        if track.id:
            await conn.execute("DELETE FROM remote_tracks WHERE id = ?;", (track.id,))
            await conn.commit()
        logger.debug("Deleted record #%d (%s)", track.id, track.url)

    async def playlist_for_url(self, url: str) -> TrackRecord:
        track = await self.update_or_create(url)
        if not track.is_playlist:
            track.is_playlist = True
            await self.update(track)
        return track

    async def count_tracks(self) -> int:
        conn = self._require_conn()
        cursor = await conn.execute("SELECT COUNT(*) AS n FROM remote_tracks;")
        row = await cursor.fetchone()
        return int(row["n"]) if row is not None else 0

    # ===========================================================================
    # Internals
    # ===========================================================================

    async def _load_entries(self, playlist_id: int) -> list[TrackRecord]:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT t.* FROM playlist_entries e
            JOIN remote_tracks t ON t.id = e.track_id
            WHERE e.playlist_id = ?
            ORDER BY e.position
            """,
            (playlist_id,),
        )
        rows = await cursor.fetchall()

        entries: list[TrackRecord] = []
        for row in rows:
            cached = self._identity.get(row["url"])
            if cached is None:
                cached = _row_to_record(row)
                self._identity[cached.url] = cached
            entries.append(cached)
        return entries
