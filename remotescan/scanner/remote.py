"""
Remote URL scanner.

`RemoteScanner` resolves a remote URL into either an audio stream with known
decode parameters or a playlist of further URLs:

1. sanity checks (URL present, remote scheme, nesting depth)
2. fetch-or-create the record for the URL
3. protocol handler overrides (custom scan routine, known-audio URLs)
4. request the URL, classify the response, then either
   - run the container header parser for the audio format, or
   - hand the body to the playlist resolver

Results are delivered through the request's callbacks, exactly once.
`resolve()` wraps that into an awaitable for callers that just want the record.

Everything the scanner talks to (record store, handler registry, cache, HTTP
client, config) is injected at construction time.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Coroutine
from contextlib import aclosing
from typing import Any

import httpx

from remotescan.config import ScannerConfig
from remotescan.core import (
    InvalidURLError,
    NestedTooDeepError,
    NoURLError,
    ParseFailureError,
    ScanError,
    TransportError,
)
from remotescan.core.cache import Cache
from remotescan.core.formats import is_song, normalize_format, type_from_path
from remotescan.core.records import MemoryTrackStore, TrackRecord, TrackStore
from remotescan.protocols import ProtocolHandlerRegistry, default_registry
from remotescan.scanner.buffer import BufferState
from remotescan.scanner.classifier import classify_response, icy_bitrate
from remotescan.scanner.context import MAX_DEPTH, ScanContext, ScanRequest, ScanSession
from remotescan.scanner.parsers import (
    Done,
    Failed,
    FormatInfo,
    NeedMore,
    ParseOutcome,
    ResponseMeta,
    Retry,
    StreamParser,
    parser_for,
)
from remotescan.scanner.parsers.mp3 import AudioStreamParser
from remotescan.scanner.playlist import PlaylistResolver
from remotescan.scanner.transport import (
    HttpConnection,
    canonical_url,
    propagate_icon,
)

logger = logging.getLogger(__name__)

# Icecast servers often allow only one connection per account
_BASIC_AUTH_URL = re.compile(r"https?://[^:]+:[^@]+@", re.IGNORECASE)

# Protocol handlers may append "#slim:..." hints that are not part of the URL
_SLIM_FRAGMENT = re.compile(r"#slim:.+$")


class RemoteScanner:
    """
    Entry point for remote scans.

    Example:
        async with RemoteScanner() as scanner:
            track = await scanner.resolve("http://example.com/stream.pls")
    """

    def __init__(
        self,
        config: ScannerConfig | None = None,
        *,
        store: TrackStore | None = None,
        registry: ProtocolHandlerRegistry | None = None,
        cache: Cache | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ScannerConfig()
        self.store: TrackStore = store if store is not None else MemoryTrackStore()
        self.registry = registry if registry is not None else default_registry()
        self.cache = cache if cache is not None else Cache()
        self._client = client
        self._owns_client = client is None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.playlists = PlaylistResolver(self)

    async def __aenter__(self) -> RemoteScanner:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Run a scan step in the background; the task is tracked until it finishes."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background scan task %s failed", task.get_name(), exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until all background scans (e.g. remaining playlist entries) are finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background scans and close the HTTP client if we created it."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def resolve(
        self,
        url: str,
        *,
        depth: int = 0,
        session: ScanSession | None = None,
        title: str | None = None,
        delay: float = 0.0,
    ) -> TrackRecord:
        """
        Scan `url` and return the resulting track or playlist record.

        Returns as soon as the scan reports success; header parsing and
        playlist entries may continue in the background.

        Raises:
            ScanError: the scan failed.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[TrackRecord] = loop.create_future()

        def on_success(track: TrackRecord, request: ScanRequest) -> None:
            if not future.done():
                future.set_result(track)

        def on_error(error: ScanError, track: TrackRecord | None, request: ScanRequest) -> None:
            if not future.done():
                future.set_exception(error)

        request = ScanRequest(
            url=url,
            depth=depth,
            session=session or ScanSession(),
            on_success=on_success,
            on_error=on_error,
            delay=delay,
            title=title,
        )

        def forward_crash(task: asyncio.Task[Any]) -> None:
            if task.cancelled() or future.done():
                return
            if task.exception() is not None:
                future.set_exception(task.exception())

        task = self.spawn(self.scan_url(url, request), name=f"scan {url}")
        task.add_done_callback(forward_crash)
        return await future

    async def scan_url(self, url: str, request: ScanRequest) -> None:
        """
        Scan a remote URL, reporting through `request.on_success` / `request.on_error`.

        Scan errors are never raised from here.
        """
        request.url = url
        logger.debug("Scanning remote stream %s", url)

        if not url:
            await request.fail(NoURLError())
            return

        if not self.registry.is_remote_url(url):
            await request.fail(InvalidURLError(url))
            return

        # Refuse to scan too deep in a nested playlist
        if request.depth >= MAX_DEPTH:
            await request.fail(NestedTooDeepError(url))
            return

        track = await self.store.update_or_create(url)
        if not track.title or track.error:
            track.title = track.title or request.title or url
            # a failure from an earlier attempt must not hide this one
            track.error = None
            await self.store.update(track)

        ctx = ScanContext(request=request, track=track)
        try:
            await self._scan(ctx, url)
        except ScanError as e:
            await request.fail(e, ctx.track)
        finally:
            if ctx.connection is not None:
                await ctx.connection.disconnect()

    async def parse_remote_header(
        self,
        track: TrackRecord,
        url: str | None = None,
        format_hint: str | None = None,
    ) -> TrackRecord:
        """
        Read the container header of an audio URL whose format is already known.

        Protocol handlers use this to fill in a record without a full scan.
        Formats without a header parser are returned untouched.

        Raises:
            ScanError: transport failure or an unusable header.
        """
        url = url or track.url
        fmt = normalize_format(format_hint or track.content_type)
        if fmt == "flac":
            fmt = "flc"
        spec = parser_for(fmt)
        if spec is None:
            return track

        ctx = ScanContext(request=ScanRequest(url=url), track=track)
        ctx.connection = self._connection(track)
        try:
            ctx.response = await ctx.connection.send(url)
            outcome = await self._run_parser(ctx, fmt)
            if outcome is not None:
                await self._apply_outcome(ctx, outcome, fmt)
        finally:
            await ctx.connection.disconnect()
        return ctx.track

    # -------------------------------------------------------------------------
    # Scan steps
    # -------------------------------------------------------------------------

    def _connection(self, track: TrackRecord) -> HttpConnection:
        ttl = self.config.image_cache_ttl_seconds

        def on_redirect(old_url: str, new_url: str) -> None:
            # keep the station icon across redirects
            propagate_icon(self.cache, track.url, new_url, ttl)

        return HttpConnection(
            self.client,
            timeout=self.config.remote_stream_timeout,
            max_redirects=self.config.max_redirects,
            user_agent=self.config.user_agent,
            on_redirect=on_redirect,
        )

    def _meta(self, ctx: ScanContext, content_type: str | None) -> ResponseMeta:
        response = ctx.response
        return ResponseMeta(
            url=ctx.track.url,
            content_type=content_type,
            content_length=response.content_length if response else None,
            total_length=response.total_length if response else None,
            max_wma_rate=self.config.max_wma_rate,
        )

    async def _scan(self, ctx: ScanContext, url: str) -> None:
        request, track = ctx.request, ctx.track

        # Check if the protocol handler has a custom scanning method
        handler = self.registry.handler_for_url(url)
        scan_stream = getattr(handler, "scan_stream", None)
        if scan_stream is not None:
            logger.debug("Scanning remote stream %s using protocol handler %r", url, handler)
            await scan_stream(self, url, track, request)
            return

        is_audio = self.registry.is_audio_url(url)
        url = _SLIM_FRAGMENT.sub("", url)

        # Some protocols are always audio and need no scanning
        if is_audio:
            fmt = handler.format_for_url(url) if handler is not None else None
            if not fmt:
                fmt = type_from_path(url)
            if fmt == "unk":
                fmt = "mp3"
            logger.debug("Remote stream %s known to be audio (%s)", url, fmt)
            track.content_type = fmt
            await self.store.update(track)
            await request.succeed(track)
            return

        if re.match(r"^mms", url, re.IGNORECASE) and not self.config.wma_direct_streaming:
            logger.debug("Not scanning MMS URL because direct streaming is disabled")
            track.content_type = "wma"
            await self.store.update(track)
            await request.succeed(track)
            return

        if request.delay:
            await asyncio.sleep(request.delay)
            if ctx.abandoned:
                logger.debug("Scan of %s abandoned", url)
                return

        ctx.connection = self._connection(track)
        logger.debug("Scanning remote URL %s", url)
        try:
            ctx.response = await ctx.connection.send(url)
        except TransportError as e:
            track.error = e.message
            await self.store.update(track)
            raise

        if ctx.abandoned:
            logger.debug("Scan of %s abandoned", url)
            return

        await self._read_remote_headers(ctx)

    async def _read_remote_headers(self, ctx: ScanContext) -> None:
        response = ctx.response
        assert response is not None
        track = ctx.track

        content_type = classify_response(response.headers, response.url)
        track.content_type = content_type
        logger.debug("Updating content-type for %s to %s", track.url, content_type)

        if _redirect_is_material(track.url, response.url):
            logger.debug("Updating redirected URL %s", response.url)
            redirected = await self.store.update_or_create(response.url)
            redirected.title = track.title
            redirected.content_type = track.content_type
            redirected.bitrate = track.bitrate
            redirected.redir = track.redir or track.url
            await self.store.update(redirected)
            await self.store.delete(track)
            track = ctx.track = redirected
        else:
            await self.store.update(track)

        fmt = is_song(track, content_type)
        if fmt:
            logger.info("This URL is an audio stream [%s]: %s", fmt, track.url)
            track.content_type = fmt
            await self._scan_audio(ctx, fmt)
        else:
            logger.info("This URL is a playlist: %s", track.url)
            body = await ctx.connection.read_body(self.config.playlist_read_limit)
            await self.playlists.resolve(ctx, body)

    async def _scan_audio(self, ctx: ScanContext, fmt: str) -> None:
        track = ctx.track

        if fmt == "wma":
            # WMA is streamed over MMS
            if re.match(r"^https?://", track.url, re.IGNORECASE):
                await self.store.rename(track, re.sub(r"^https?", "mms", track.url, flags=re.IGNORECASE))
        elif parser_for(fmt) is None and re.match(r"^mms", track.url, re.IGNORECASE):
            logger.debug("URL was mms:// but content-type is %s, fixing URL to http://", fmt)
            await self.store.rename(track, re.sub(r"^mmsh?", "http", track.url, flags=re.IGNORECASE))

        if parser_for(fmt) is None:
            await self._scan_generic(ctx, fmt)
            return

        logger.debug("Reading %s header", fmt)
        outcome = await self._run_parser(ctx, fmt)
        if outcome is None:
            return
        await self._apply_outcome(ctx, outcome, fmt)
        await ctx.request.succeed(ctx.track)

    async def _run_parser(self, ctx: ScanContext, fmt: str) -> ParseOutcome | None:
        """Run the header parser for `fmt`; None means the scan was abandoned."""
        spec = parser_for(fmt)
        assert spec is not None and ctx.connection is not None
        meta = self._meta(ctx, fmt)

        if not spec.streaming:
            data = await ctx.connection.read_body(spec.read_limit)
            if ctx.abandoned:
                return None
            return spec.parse(data, meta)

        return await self._run_stream_parser(ctx, spec.stream(meta))

    async def _run_stream_parser(self, ctx: ScanContext, parser: StreamParser) -> ParseOutcome | None:
        """Feed the body to a streaming parser, re-requesting once on `Retry`."""
        conn = ctx.connection
        assert conn is not None

        while True:
            outcome = await self._feed(ctx, parser)
            if not isinstance(outcome, Retry):
                return outcome

            if ctx.retried:
                return Failed(f"Header still not found after seeking to {outcome.offset}")

            # re-calculate the header every time, we can't go direct at all
            ctx.retried = True
            try:
                ctx.response = await conn.reissue(outcome.offset)
            except TransportError as e:
                logger.error("Could not find MP4 header for %s: %s", ctx.track.url, e.message)
                raise
            parser.resume(outcome.offset, self._meta(ctx, parser.meta.content_type))

    async def _feed(self, ctx: ScanContext, parser: StreamParser) -> ParseOutcome | None:
        conn = ctx.connection
        assert conn is not None

        outcome: ParseOutcome | None = None
        async with aclosing(conn.iter_body()) as chunks:
            async for chunk in chunks:
                if ctx.abandoned:
                    logger.debug("Scan of %s abandoned", ctx.track.url)
                    break
                outcome = parser.feed(chunk)
                if not isinstance(outcome, NeedMore):
                    break
            else:
                # end of stream
                outcome = parser.feed(b"")
        await conn.disconnect()
        if ctx.abandoned:
            return None
        return outcome

    async def _apply_outcome(self, ctx: ScanContext, outcome: ParseOutcome, fmt: str) -> None:
        track = ctx.track

        if isinstance(outcome, Failed):
            logger.error("Unable to parse %s header for %s: %s", fmt, track.url, outcome.reason)
            # Delete bad item
            await self.store.delete(track)
            raise ParseFailureError(outcome.reason, code=outcome.code)

        if not isinstance(outcome, Done):
            raise ParseFailureError(f"Unexpected parser outcome {outcome!r}")

        info = outcome.info
        self._apply_format_info(track, info)

        if fmt == "wma":
            session = ctx.session
            session.scan_data[track.url] = {
                "stream_num": info.hints.get("stream_num"),
                "metadata": info.hints.get("metadata"),
                "headers": dict(ctx.response.headers) if ctx.response else {},
            }
            if info.hints.get("metadata_stream") is not None:
                session.wma_metadata_stream = info.hints["metadata_stream"]

        await self.store.update(track)

    def _apply_format_info(self, track: TrackRecord, info: FormatInfo) -> None:
        if info.content_type and info.content_type != track.content_type:
            logger.debug("Changing content type of %s to %s", track.url, info.content_type)
            track.content_type = info.content_type

        for attr in (
            "samplerate",
            "samplesize",
            "channels",
            "audio_offset",
            "audio_size",
            "block_alignment",
            "endian",
        ):
            value = getattr(info, attr)
            if value is not None:
                setattr(track, attr, value)

        track.set_bitrate(info.avg_bitrate, info.vbr)
        if info.duration_ms:
            track.set_duration(info.duration_ms / 1000)
        if info.hints.get("drm"):
            track.drm = True

        if info.initial_block:
            # stash the header for the streaming layer
            with BufferState() as state:
                state.write_spill(info.initial_block)
                track.initial_block_fn = state.keep_spill()
        if info.initial_block_type is not None:
            track.set_processor(track.content_type or "", info.initial_block_type)

    async def _scan_generic(self, ctx: ScanContext, fmt: str) -> None:
        """Audio without a header parser: ICY headers, then a bitrate scan."""
        request, track, response = ctx.request, ctx.track, ctx.response
        assert response is not None and ctx.connection is not None

        bitrate, vbr = icy_bitrate(response.headers)
        if bitrate:
            logger.debug("Found bitrate in stream headers: %d (vbr=%s)", bitrate, vbr)
            track.set_bitrate(bitrate, vbr)
            await self.store.update(track)

            # We don't need to read any more data from this stream
            await ctx.connection.disconnect()

            if _BASIC_AUTH_URL.match(track.url):
                logger.debug("Auth stream detected, waiting before streaming")
                await asyncio.sleep(self.config.auth_delay_seconds)
            await request.succeed(track)
            return

        # https streams only report once scanning is done; others can start playing now
        # unless a seek is pending
        if not re.match(r"^https", track.url, re.IGNORECASE) and ctx.session.seek_start_time is None:
            await request.succeed(track)

        logger.debug("Reading audio data to detect bitrate and/or tags")
        with BufferState(spill=True) as state:
            parser = AudioStreamParser(self._meta(ctx, fmt), state)
            outcome = await self._run_stream_parser(ctx, parser)
            if outcome is None:
                return
            if isinstance(outcome, Done):
                self._apply_format_info(track, outcome.info)

        # Update filesize with Content-Length
        if response.content_length:
            track.filesize = response.content_length
        await self.store.update(track)
        await request.succeed(track)


def _redirect_is_material(record_url: str, final_url: str) -> bool:
    """
    True if a redirect moved the stream to a different URL.

    `mms://x` requested as `http://x` is the same stream.
    """
    if canonical_url(record_url) == canonical_url(final_url):
        return False
    m = re.match(r"^mmsh?://(.+)", record_url, re.IGNORECASE)
    if m is not None:
        return canonical_url(final_url) != canonical_url(f"http://{m.group(1)}")
    return True


__all__ = ["RemoteScanner"]
