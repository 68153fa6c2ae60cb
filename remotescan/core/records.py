"""
Track and playlist records for remote URLs.

A `TrackRecord` is the mutable, URL-keyed record the scanner fills in while it
reads a remote stream. A playlist is the same record with `is_playlist` set and
an ordered list of entry records; converting a track into a playlist keeps the
record's identity (same object, same id), the way a database row would.

Design decisions:
- Records are plain dataclasses; persistence is the store's job.
- The store keeps an identity map: one URL, one record object per process.
- `MemoryTrackStore` is the default; `remotescan.core.track_db.SqliteTrackStore`
  persists the same records with aiosqlite.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol

from remotescan.core.formats import is_song

logger = logging.getLogger(__name__)


class InitialBlock(Enum):
    """When the streaming layer must replay the spilled header before audio data."""

    ONSEEK = 1  # header only needed when the stream is started at an offset
    ALWAYS = 2  # header must be regenerated for every stream start


@dataclass(eq=False)
class TrackRecord:
    """
    Remote track (or playlist) record.

    Identity is the URL; `id` is assigned by the store. Fields left as None are
    unknown, not zero.
    """

    url: str
    id: int = 0
    title: str | None = None
    cover: str | None = None
    content_type: str | None = None
    bitrate: int | None = None
    vbr: bool = False
    duration_seconds: float | None = None
    samplerate: int | None = None
    samplesize: int | None = None
    channels: int | None = None
    audio_offset: int | None = None
    audio_size: int | None = None
    block_alignment: int | None = None
    endian: int | None = None  # 0 = little-endian, 1 = big-endian
    filesize: int | None = None
    redir: str | None = None
    error: str | None = None
    drm: bool = False
    initial_block_fn: str | None = None
    initial_block_type: InitialBlock | None = None
    processors: dict[str, InitialBlock] = field(default_factory=dict)
    is_playlist: bool = False
    entries: list[TrackRecord] = field(default_factory=list)
    deleted: bool = False

    def __repr__(self) -> str:
        kind = "PlaylistRecord" if self.is_playlist else "TrackRecord"
        return f"<{kind} id={self.id} url={self.url!r} type={self.content_type!r}>"

    def set_bitrate(self, bitrate: float | None, vbr: bool = False) -> None:
        """Store a bitrate in bits per second (ignores empty values)."""
        if not bitrate or bitrate <= 0:
            return
        self.bitrate = int(bitrate)
        self.vbr = bool(vbr)

    def set_duration(self, seconds: float | None) -> None:
        if seconds is None or seconds <= 0:
            return
        self.duration_seconds = float(seconds)

    def set_processor(self, content_type: str, block_type: InitialBlock) -> None:
        """Register how the initial block for `content_type` must be derived."""
        self.processors[content_type] = block_type
        self.initial_block_type = block_type

    @property
    def has_url_title(self) -> bool:
        """True when the title is missing or is just a URL."""
        return not self.title or re.match(r"^(?:http|mms)", self.title, re.IGNORECASE) is not None

    # -------------------------------------------------------------------------
    # Playlist helpers
    # -------------------------------------------------------------------------

    def set_tracks(self, entries: Iterable[TrackRecord | None]) -> None:
        """Replace the playlist entries, preserving order and skipping empty slots."""
        self.entries = [e for e in entries if e is not None]

    def next_entry(self, _seen: set[int] | None = None) -> TrackRecord | None:
        """
        Return the first playable entry of this playlist.

        Nested playlists are searched depth-first. Deleted or failed entries are
        skipped, as are entries that have not been classified as audio yet.
        """
        seen = _seen if _seen is not None else set()
        if id(self) in seen:
            return None
        seen.add(id(self))

        for entry in self.entries:
            if entry.deleted or entry.error:
                continue
            if entry.is_playlist:
                nested = entry.next_entry(seen)
                if nested is not None:
                    return nested
                continue
            if is_song(entry):
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (entries are summarized recursively)."""
        result: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "content_type": self.content_type,
            "bitrate": self.bitrate,
            "vbr": self.vbr,
            "duration": self.duration_seconds,
            "samplerate": self.samplerate,
            "samplesize": self.samplesize,
            "channels": self.channels,
            "audio_offset": self.audio_offset,
            "audio_size": self.audio_size,
            "filesize": self.filesize,
            "redir": self.redir,
        }
        if self.cover:
            result["cover"] = self.cover
        if self.initial_block_type is not None:
            result["initial_block"] = self.initial_block_type.name.lower()
        if self.is_playlist:
            result["entries"] = [e.to_dict() for e in self.entries]
        return result


# Playlists are TrackRecords with `is_playlist` set.
PlaylistRecord = TrackRecord


class TrackStore(Protocol):
    """Async record store used by the scanner."""

    async def update_or_create(
        self, url: str, *, title: str | None = None, cover: str | None = None
    ) -> TrackRecord: ...

    async def get(self, url: str) -> TrackRecord | None: ...

    async def update(self, track: TrackRecord) -> None: ...

    async def rename(self, track: TrackRecord, new_url: str) -> TrackRecord: ...

    async def delete(self, track: TrackRecord) -> None: ...

    async def playlist_for_url(self, url: str) -> TrackRecord: ...


class MemoryTrackStore:
    """
    In-memory record store.

    This is a central registry that creates and retrieves records by URL.
    Records live for the lifetime of the process.
    """

    def __init__(self) -> None:
        self._records: dict[str, TrackRecord] = {}
        self._next_id = 1

    async def update_or_create(
        self, url: str, *, title: str | None = None, cover: str | None = None
    ) -> TrackRecord:
        """
        Get or create the record for a URL.

        Args:
            url: Record URL (identity).
            title: Optional title to set.
            cover: Optional artwork URL to set.

        Returns:
            The record (created if it didn't exist).
        """
        track = self._records.get(url)
        if track is None:
            track = TrackRecord(url=url, id=self._next_id)
            self._next_id += 1
            self._records[url] = track
            logger.debug("Created record #%d for %s", track.id, url)
        if title:
            track.title = title
        if cover:
            track.cover = cover
        return track

    async def get(self, url: str) -> TrackRecord | None:
        return self._records.get(url)

    async def update(self, track: TrackRecord) -> None:
        if not track.deleted:
            self._records[track.url] = track

    async def rename(self, track: TrackRecord, new_url: str) -> TrackRecord:
        """Move a record to a new URL, keeping its identity."""
        if self._records.get(track.url) is track:
            del self._records[track.url]
        logger.debug("Renaming record #%d: %s -> %s", track.id, track.url, new_url)
        track.url = new_url
        self._records[new_url] = track
        return track

    async def delete(self, track: TrackRecord) -> None:
        if self._records.get(track.url) is track:
            del self._records[track.url]
        track.deleted = True
        logger.debug("Deleted record #%d (%s)", track.id, track.url)

    async def playlist_for_url(self, url: str) -> TrackRecord:
        """Get or create the record for `url` and flag it as a playlist."""
        track = await self.update_or_create(url)
        track.is_playlist = True
        return track

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, url: str) -> bool:
        return url in self._records
