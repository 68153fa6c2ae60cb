"""
Per-scan request and context objects.

- `ScanSession` is the caller's handle (a player, a CLI invocation, a web
  request). The scanner only reads `abandoned`/`seek_start_time` and writes the
  per-URL scan data the WMA/MMS layer needs later.
- `ScanRequest` describes one resolution attempt and owns the one-shot
  callbacks. Whatever happens, at most one of them fires.
- `ScanContext` is what the scan steps hand to each other: the request, the
  record being filled and the open connection.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from remotescan.core import ScanError

if TYPE_CHECKING:
    from remotescan.core.records import TrackRecord
    from remotescan.scanner.transport import HttpConnection, ResponseInfo

logger = logging.getLogger(__name__)

# Playlists nested deeper than this are refused.
MAX_DEPTH = 7

SuccessCallback = Callable[["TrackRecord", "ScanRequest"], Any]
ErrorCallback = Callable[[ScanError, "TrackRecord | None", "ScanRequest"], Any]


@dataclass
class ScanSession:
    """
    Opaque handle of whoever started the scan.

    Attributes:
        abandoned: Set by the owner to make in-flight scans stop quietly.
        scan_data: Per-URL data for the WMA streaming layer
            (`{"stream_num", "metadata", "headers"}`).
        wma_metadata_stream: ASF command-media stream carrying title updates.
        is_playlist: Set when a feed body was flattened into a playlist.
        seek_start_time: Pending seek; header-less streams report success only
            after parsing while this is set.
    """

    abandoned: bool = False
    scan_data: dict[str, dict[str, Any]] = field(default_factory=dict)
    wma_metadata_stream: int | None = None
    is_playlist: bool = False
    seek_start_time: float | None = None


def _noop_success(track: TrackRecord, request: ScanRequest) -> None:
    pass


def _noop_error(error: ScanError, track: TrackRecord | None, request: ScanRequest) -> None:
    pass


@dataclass(eq=False)
class ScanRequest:
    """
    One request to resolve a URL.

    `succeed()`/`fail()` are guarded: the first call wins, later calls are
    logged and dropped. Callbacks may be plain functions or coroutines.
    """

    url: str = ""
    depth: int = 0
    session: ScanSession = field(default_factory=ScanSession)
    on_success: SuccessCallback = _noop_success
    on_error: ErrorCallback = _noop_error
    pass_through: dict[str, Any] = field(default_factory=dict)
    delay: float = 0.0
    title: str | None = None
    done: bool = field(default=False, init=False)

    def child(
        self,
        url: str,
        *,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        delay: float = 0.0,
        title: str | None = None,
    ) -> ScanRequest:
        """Request for a nested playlist entry (one level deeper, same session)."""
        return ScanRequest(
            url=url,
            depth=self.depth + 1,
            session=self.session,
            on_success=on_success,
            on_error=on_error,
            pass_through=self.pass_through,
            delay=delay,
            title=title,
        )

    async def succeed(self, track: TrackRecord) -> bool:
        if self.done:
            logger.debug("Dropping duplicate success for %s", self.url)
            return False
        self.done = True
        result = self.on_success(track, self)
        if inspect.isawaitable(result):
            await result
        return True

    async def fail(self, error: ScanError, track: TrackRecord | None = None) -> bool:
        if self.done:
            logger.debug("Dropping error %s for finished scan of %s", error.code.value, self.url)
            return False
        self.done = True
        result = self.on_error(error, track, self)
        if inspect.isawaitable(result):
            await result
        return True


@dataclass(eq=False)
class ScanContext:
    """State threaded through the steps of one scan."""

    request: ScanRequest
    track: TrackRecord
    connection: HttpConnection | None = None
    response: ResponseInfo | None = None
    retried: bool = False

    @property
    def session(self) -> ScanSession:
        return self.request.session

    @property
    def abandoned(self) -> bool:
        return self.request.session.abandoned
