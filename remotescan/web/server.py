"""
Web Server Module for remotescan.

This module provides the WebServer class that creates and manages the
FastAPI application around a RemoteScanner.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI

from remotescan import __version__
from remotescan.web.routes.scan import register_scan_routes

if TYPE_CHECKING:
    from remotescan.scanner.remote import RemoteScanner

logger = logging.getLogger(__name__)


class WebServer:
    """FastAPI-based web server exposing the remote scanner."""

    def __init__(self, scanner: RemoteScanner) -> None:
        """
        Initialize the WebServer.

        Args:
            scanner: Scanner used by the scan endpoint
        """
        self.scanner = scanner

        self.app = FastAPI(
            title="remotescan",
            description="Remote stream format resolution",
            version=__version__,
        )

        # Server state
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 9010

        self._register_routes()

    def _register_routes(self) -> None:
        """Register all routes with the FastAPI app."""

        @self.app.get("/health")
        async def health_check() -> dict[str, str]:
            """Health check endpoint."""
            return {"status": "ok"}

        register_scan_routes(self.app, self.scanner)

    async def start(self, host: str = "127.0.0.1", port: int = 9010) -> None:
        """
        Start the web server in the background.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve())

        logger.info("Web server started on http://%s:%d", host, port)

    async def run(self, host: str = "127.0.0.1", port: int = 9010) -> None:
        """Start the web server and serve until it is stopped."""
        await self.start(host, port)
        try:
            if self._serve_task is not None:
                await self._serve_task
        finally:
            self._serve_task = None
            await self.stop()

    async def stop(self) -> None:
        """Stop the web server and the scanner's background scans."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None

        await self.scanner.aclose()
        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
