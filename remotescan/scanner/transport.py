"""
HTTP transport for the remote scanner.

`HttpConnection` is a thin layer over a shared `httpx.AsyncClient`:
- redirects are followed by hand so the scanner sees every hop
  (MMS rewrites, artwork propagation)
- the body is only ever streamed; callers decide how much of it they want
  and disconnect as soon as they have it
- `reissue()` repeats the final request with a byte range (MP4 files whose
  `mdat` comes before `moov`)

httpx cannot speak mms://, so MMS URLs are requested over HTTP with the
Windows Media Player "Describe" headers, the same way WMP does it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from urllib.parse import urljoin

import httpx

from remotescan.core import TransportError
from remotescan.core.cache import Cache
from remotescan.protocols import random_guid

logger = logging.getLogger(__name__)

WMA_USER_AGENT = "NSPlayer/8.0.0.3802"

# URLs that get the Windows Media headers up front
_WMA_URL = re.compile(r"(?:^mms|\.asf|\.asx|\.wma)", re.IGNORECASE)

RedirectHook = Callable[[str, str], None]


def wants_wma_headers(url: str) -> bool:
    return _WMA_URL.search(url) is not None


def mms_to_http(url: str) -> str:
    """Rewrite `mms://` / `mmsh://` to `http://` (other URLs are returned unchanged)."""
    return re.sub(r"^mms[h]?://", "http://", url, flags=re.IGNORECASE)


def add_wma_headers(url: str, headers: dict[str, str]) -> str:
    """
    Turn a request into a Windows Media "Describe" request.

    Updates `headers` in place and returns the URL to request (mms -> http).
    """
    headers["User-Agent"] = WMA_USER_AGENT
    headers["Pragma"] = f"xClientGUID={{{random_guid()}}}, no-cache"
    headers["Connection"] = "close"
    return mms_to_http(url)


def canonical_url(url: str) -> str:
    try:
        return str(httpx.URL(url))
    except httpx.InvalidURL:
        return url


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _total_length(headers: httpx.Headers) -> int | None:
    """Full resource length from `Content-Range: bytes a-b/total`, else Content-Length."""
    content_range = headers.get("content-range")
    if content_range:
        total = content_range.rsplit("/", 1)[-1]
        if total != "*":
            parsed = _parse_int(total)
            if parsed is not None:
                return parsed
    return _parse_int(headers.get("content-length"))


@dataclass(frozen=True, slots=True)
class ResponseInfo:
    """What the scanner needs to know about a response once headers are in."""

    url: str
    status: int
    headers: httpx.Headers
    content_type: str | None
    content_length: int | None
    total_length: int | None

    @classmethod
    def from_response(cls, response: httpx.Response) -> ResponseInfo:
        content_type = response.headers.get("content-type")
        return cls(
            url=str(response.url),
            status=response.status_code,
            headers=response.headers,
            content_type=content_type.split(";", 1)[0].strip().lower() if content_type else None,
            content_length=_parse_int(response.headers.get("content-length")),
            total_length=_total_length(response.headers),
        )


class HttpConnection:
    """
    One scan's connection to a remote server.

    The client is shared and owned by the caller; the connection only owns the
    response it currently has open.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = 10.0,
        max_redirects: int = 10,
        user_agent: str | None = None,
        on_redirect: RedirectHook | None = None,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.user_agent = user_agent
        self.on_redirect = on_redirect
        self._response: httpx.Response | None = None
        self._url: str | None = None
        self._headers: dict[str, str] = {}
        # bytes to drop from the body when a server ignored our Range header
        self._skip = 0

    async def _send_once(self, url: str, headers: dict[str, str]) -> httpx.Response:
        try:
            request = self.client.build_request(
                "GET", url, headers=headers, timeout=httpx.Timeout(self.timeout)
            )
            return await self.client.send(request, stream=True, follow_redirects=False)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Can't connect to remote server %s: %s", url, e)
            raise TransportError(str(e) or type(e).__name__) from e

    async def send(self, url: str, headers: dict[str, str] | None = None) -> ResponseInfo:
        """
        Request `url` and wait for the response headers.

        Raises:
            TransportError: connect failure, HTTP error status, too many redirects.
        """
        await self.disconnect()

        request_headers = dict(headers or {})
        if wants_wma_headers(url):
            url = add_wma_headers(url, request_headers)
        elif self.user_agent:
            request_headers.setdefault("User-Agent", self.user_agent)

        for _ in range(self.max_redirects + 1):
            response = await self._send_once(url, request_headers)
            if not response.is_redirect:
                break

            location = response.headers.get("location", "")
            await response.aclose()
            try:
                new_url = urljoin(url, location)
            except ValueError as e:
                raise TransportError(f"Invalid redirect location {location!r}") from e
            logger.debug("Server redirected to %s", new_url)

            if re.match(r"^mms", new_url, re.IGNORECASE):
                logger.debug("Server redirected to MMS URL %s, adding WMA headers", new_url)
                new_url = add_wma_headers(new_url, request_headers)

            if self.on_redirect is not None:
                self.on_redirect(url, canonical_url(new_url))
            url = new_url
        else:
            raise TransportError(f"Too many redirects ({self.max_redirects})")

        if response.status_code >= 400:
            await response.aclose()
            reason = response.reason_phrase or "error"
            logger.error("Remote server returned %d for %s", response.status_code, url)
            raise TransportError(f"{response.status_code} {reason}")

        self._response = response
        self._url = str(response.url)
        self._headers = request_headers
        return ResponseInfo.from_response(response)

    async def reissue(self, range_start: int) -> ResponseInfo:
        """Repeat the last request from byte `range_start` onwards."""
        if self._url is None:
            raise TransportError("No request to reissue")
        url = self._url
        headers = dict(self._headers)
        headers["Range"] = f"bytes={range_start}-"
        logger.debug("Re-requesting %s with %s", url, headers["Range"])
        await self.disconnect()
        # The URL is final already; don't inject the WMA headers a second time.
        response = await self._send_once(url, headers)
        if response.status_code >= 400 or response.is_redirect:
            await response.aclose()
            raise TransportError(f"{response.status_code} {response.reason_phrase or 'error'}")
        self._response = response
        self._url = str(response.url)
        self._headers = headers
        if response.status_code != 206 and range_start > 0:
            logger.warning("%s ignored the range request, skipping %d bytes", url, range_start)
            self._skip = range_start
        return ResponseInfo.from_response(response)

    async def iter_body(self) -> AsyncIterator[bytes]:
        """Yield body chunks until the server ends the response."""
        if self._response is None:
            raise TransportError("Not connected")
        try:
            async for chunk in self._response.aiter_bytes():
                if self._skip:
                    dropped = min(self._skip, len(chunk))
                    self._skip -= dropped
                    chunk = chunk[dropped:]
                if chunk:
                    yield chunk
        except httpx.HTTPError as e:
            logger.error("Error reading from %s: %s", self._url, e)
            raise TransportError(str(e) or type(e).__name__) from e

    async def read_body(self, limit: int | None = None) -> bytes:
        """
        Read the body, stopping after `limit` bytes, then disconnect.

        Returns:
            At most `limit` bytes.
        """
        data = bytearray()
        try:
            async with aclosing(self.iter_body()) as chunks:
                async for chunk in chunks:
                    data.extend(chunk)
                    if limit is not None and len(data) >= limit:
                        del data[limit:]
                        break
        finally:
            await self.disconnect()
        return bytes(data)

    async def disconnect(self) -> None:
        self._skip = 0
        if self._response is not None:
            response, self._response = self._response, None
            await response.aclose()


def propagate_icon(cache: Cache, old_url: str, new_url: str, ttl: float) -> None:
    """Copy a cached station icon from `old_url` to the URL it redirected to."""
    icon = cache.get(f"remote_image_{old_url}")
    if icon:
        cache.set(f"remote_image_{new_url}", icon, ttl)
