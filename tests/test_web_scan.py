"""
Tests for remotescan.web (FastAPI app and scan route).

The app is driven in-process through httpx.ASGITransport; the scanner behind it
talks to a FakeRemote through httpx.MockTransport.
"""

from __future__ import annotations

import httpx
import pytest
from conftest import FakeRemote
from httpx import ASGITransport, AsyncClient

from remotescan.scanner import RemoteScanner
from remotescan.web import WebServer

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def server(scanner: RemoteScanner) -> WebServer:
    return WebServer(scanner)


@pytest.fixture
async def client(server: WebServer) -> AsyncClient:
    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# =============================================================================
# Routes
# =============================================================================


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestScanRoute:
    """Tests for /api/remote/scan."""

    async def test_audio_stream(self, client: AsyncClient, remote: FakeRemote) -> None:
        remote.audio("http://radio.example.com/live", "audio/mpeg", **{"icy-br": "128"})

        response = await client.get("/api/remote/scan", params={"url": "http://radio.example.com/live"})

        assert response.status_code == 200
        track = response.json()["track"]
        assert track["url"] == "http://radio.example.com/live"
        assert track["content_type"] == "mp3"
        assert track["bitrate"] == 128_000

    async def test_playlist(self, client: AsyncClient, remote: FakeRemote) -> None:
        remote.text(
            "http://radio.example.com/listen.pls",
            "audio/x-scpls",
            "[playlist]\nFile1=http://radio.example.com/live\n",
        )
        remote.audio("http://radio.example.com/live", "audio/mpeg", **{"icy-br": "64"})

        response = await client.get("/api/remote/scan", params={"url": "http://radio.example.com/listen.pls"})

        assert response.status_code == 200
        track = response.json()["track"]
        assert track["bitrate"] == 64_000
        assert [e["url"] for e in track["entries"]] == ["http://radio.example.com/live"]

    @pytest.mark.parametrize(
        ("url", "code"),
        [
            ("", "SCANNER_REMOTE_NO_URL_PROVIDED"),
            ("ftp://example.com/a.mp3", "SCANNER_REMOTE_INVALID_URL"),
            ("http://radio.example.com/missing", "TRANSPORT_ERROR"),
        ],
    )
    async def test_scan_errors(self, client: AsyncClient, url: str, code: str) -> None:
        response = await client.get("/api/remote/scan", params={"url": url})
        assert response.status_code == 422
        assert response.json()["code"] == code


class TestServerLifecycle:
    async def test_stop_closes_scanner(self, remote: FakeRemote) -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as http:
            scanner = RemoteScanner(client=http)
            server = WebServer(scanner)
            await server.stop()
            assert scanner.pending_tasks == 0
            assert server.port == 9010
