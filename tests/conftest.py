"""
Shared fixtures for scanner tests.

`FakeRemote` stands in for the remote servers: routes are registered per URL
and served through `httpx.MockTransport`, so no test touches the network.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from remotescan.config import ScannerConfig
from remotescan.core.cache import Cache
from remotescan.core.records import MemoryTrackStore
from remotescan.scanner import RemoteScanner

Route = Callable[[httpx.Request], httpx.Response]


class FakeRemote:
    """Routes requests by URL and records everything it was asked for."""

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, route: Route) -> None:
        self.routes[url] = route

    def audio(self, url: str, content_type: str, body: bytes = b"", **headers: str) -> None:
        def route(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Type": content_type, **headers}, content=body)

        self.add(url, route)

    def text(self, url: str, content_type: str, body: str) -> None:
        self.audio(url, content_type, body.encode("utf-8"))

    def redirect(self, url: str, location: str, status: int = 302) -> None:
        self.add(url, lambda request: httpx.Response(status, headers={"Location": location}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        return route(request)

    def requests_for(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


def ranged(body: bytes, content_type: str) -> Route:
    """Route serving `body` with support for `Range: bytes=N-`."""

    def route(request: httpx.Request) -> httpx.Response:
        range_header = request.headers.get("range")
        if not range_header:
            return httpx.Response(200, headers={"Content-Type": content_type}, content=body)
        start = int(range_header.removeprefix("bytes=").rstrip("-"))
        return httpx.Response(
            206,
            headers={
                "Content-Type": content_type,
                "Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}",
            },
            content=body[start:],
        )

    return route


def mp3_frames(count: int = 20) -> bytes:
    """`count` MPEG-1 Layer III frames, 128 kbps, 44.1 kHz."""
    return (b"\xff\xfb\x90\x00" + bytes(413)) * count


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def config() -> ScannerConfig:
    return ScannerConfig(playlist_stagger_seconds=0.0, auth_delay_seconds=0.0)


@pytest.fixture
def store() -> MemoryTrackStore:
    return MemoryTrackStore()


@pytest.fixture
async def scanner(
    remote: FakeRemote, config: ScannerConfig, store: MemoryTrackStore
) -> AsyncIterator[RemoteScanner]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as client:
        scanner = RemoteScanner(config, store=store, client=client, cache=Cache())
        yield scanner
        await scanner.aclose()
