"""
Remote playlist resolution.

A playlist body is parsed into entries and every entry is scanned in its own
background task, one nesting level deeper, with start times staggered by
`playlist_stagger_seconds`. The entries race: the first one that resolves to
something playable reports the playlist as ready. The other entries keep
resolving in the background so the playlist fills in for the player.

The playlist only fails when every entry has finished and none was playable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from remotescan.core import PlaylistEmptyError, ScanError
from remotescan.core.playlist_formats import PlaylistParseError, is_feed_type, read_playlist
from remotescan.core.records import TrackRecord

if TYPE_CHECKING:
    from remotescan.scanner.context import ScanContext, ScanRequest
    from remotescan.scanner.remote import RemoteScanner

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _RaceState:
    """Completion bookkeeping shared by the entries of one playlist."""

    playlist: TrackRecord
    outer: ScanRequest
    total: int
    scanned: int = 0
    ready: bool = False
    last_error: ScanError | None = None


class PlaylistResolver:
    """Expands playlist responses for a `RemoteScanner`."""

    def __init__(self, scanner: RemoteScanner) -> None:
        self.scanner = scanner

    async def resolve(self, ctx: ScanContext, body: bytes) -> None:
        """
        Turn the record in `ctx` into a playlist and start scanning its entries.

        Raises:
            PlaylistEmptyError: the body contains no usable entries.
        """
        scanner = self.scanner
        store = scanner.store
        track = ctx.track
        content_type = track.content_type

        try:
            entries = read_playlist(content_type, body, track.url)
        except PlaylistParseError as e:
            logger.error("Unable to parse %s playlist %s: %s", content_type, track.url, e)
            entries = []

        if is_feed_type(content_type) and entries:
            ctx.session.is_playlist = True

        valid = [e for e in entries if e is not None]
        if not valid:
            logger.error("No entries found in playlist %s", track.url)
            await store.delete(track)
            raise PlaylistEmptyError(track.url)

        logger.info("Found %d entries in playlist %s", len(valid), track.url)

        records: list[TrackRecord | None] = []
        for entry in entries:
            if entry is None:
                records.append(None)
                continue
            records.append(await store.update_or_create(entry.url, title=entry.title, cover=entry.cover))

        playlist = await store.playlist_for_url(track.url)
        playlist.set_tracks(records)
        await store.update(playlist)
        ctx.track = playlist

        state = _RaceState(playlist=playlist, outer=ctx.request, total=len(valid))
        title = None if playlist.has_url_title else playlist.title
        stagger = scanner.config.playlist_stagger_seconds

        spawned = 0
        for entry in records:
            if entry is None:
                continue
            request = ctx.request.child(
                entry.url,
                on_success=self._on_entry_done(state, entry),
                on_error=self._on_entry_failed(state, entry),
                delay=spawned * stagger,
                title=title,
            )
            scanner.spawn(scanner.scan_url(entry.url, request), name=f"scan {entry.url}")
            spawned += 1

    def _on_entry_done(self, state: _RaceState, entry: TrackRecord):
        async def callback(result: TrackRecord, request: ScanRequest) -> None:
            await self._entry_finished(state, entry, result)

        return callback

    def _on_entry_failed(self, state: _RaceState, entry: TrackRecord):
        async def callback(error: ScanError, result: TrackRecord | None, request: ScanRequest) -> None:
            logger.debug("Playlist entry %s failed: %s", entry.url, error)
            state.last_error = error
            await self._entry_finished(state, entry, result)

        return callback

    async def _entry_finished(
        self, state: _RaceState, entry: TrackRecord, result: TrackRecord | None
    ) -> None:
        playlist = state.playlist
        store = self.scanner.store

        # A redirect may have replaced the entry's record
        if result is not None and result.id != entry.id:
            logger.debug("Replacing playlist entry %s with %s", entry.url, result.url)
            playlist.set_tracks(result if e is entry else e for e in playlist.entries)
            await store.update(playlist)

        state.scanned += 1
        logger.debug(
            "Scanned %d/%d entries of playlist %s", state.scanned, state.total, playlist.url
        )

        if not state.ready:
            playable = playlist.next_entry()
            if playable is not None:
                state.ready = True
                playlist.set_bitrate(playable.bitrate, playable.vbr)
                if playlist.has_url_title:
                    playlist.title = playable.title or playlist.url
                await store.update(playlist)
                logger.debug("Playlist %s is ready, first playable entry %s", playlist.url, playable.url)
                await state.outer.succeed(playlist)
                return

        if state.scanned == state.total and not state.ready:
            error = state.last_error or PlaylistEmptyError(playlist.url)
            logger.error("No playable entries in playlist %s", playlist.url)
            await store.delete(playlist)
            await state.outer.fail(error, playlist)
