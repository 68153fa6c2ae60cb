"""
Protocol handler base class, built-in handlers and the handler registry.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterator
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


def random_guid() -> str:
    """Return a fresh client GUID in the uppercase form Windows Media servers expect."""
    return str(uuid.uuid4()).upper()


def url_scheme(url: str) -> str:
    """Lowercased scheme of `url`; empty for URLs that cannot be split."""
    try:
        return urlsplit(url).scheme.lower()
    except ValueError:
        logger.debug("Malformed URL %r", url)
        return ""


class ProtocolHandler:
    """
    Base class for protocol handlers.

    Subclasses may define a coroutine method

        async def scan_stream(self, scanner, url, track, request) -> None

    to take over scanning for their URLs completely. The method must report
    through `request.succeed()` / `request.fail()` itself.
    """

    schemes: tuple[str, ...] = ()
    is_remote: bool = True

    def is_audio_url(self, url: str) -> bool:
        """Return True if every URL of this handler is known to be audio."""
        return False

    def format_for_url(self, url: str) -> str | None:
        """Content type for URLs known to be audio (None = guess from the extension)."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} schemes={self.schemes}>"


class HttpHandler(ProtocolHandler):
    schemes = ("http", "https")


class MmsHandler(ProtocolHandler):
    """
    Windows Media streaming (mms://).

    MMS URLs are scanned over HTTP; the scanner rewrites the scheme and adds the
    Windows Media Player request headers.
    """

    schemes = ("mms", "mmsh")


class ProtocolHandlerRegistry:
    """
    Registry mapping URL schemes to protocol handlers.

    Handlers registered later for the same scheme replace earlier ones, so
    plugins can override the built-in HTTP handling.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ProtocolHandler] = {}

    def register(self, handler: ProtocolHandler, *schemes: str) -> None:
        """
        Register a handler.

        Args:
            handler: The handler instance.
            schemes: Schemes to register it for (defaults to `handler.schemes`).
        """
        for scheme in schemes or handler.schemes:
            scheme = scheme.lower()
            if scheme in self._handlers:
                logger.info("Replacing protocol handler for %s:// with %r", scheme, handler)
            self._handlers[scheme] = handler

    def unregister(self, scheme: str) -> ProtocolHandler | None:
        return self._handlers.pop(scheme.lower(), None)

    def handler_for_url(self, url: str) -> ProtocolHandler | None:
        if not url:
            return None
        return self._handlers.get(url_scheme(url))

    def is_remote_url(self, url: str) -> bool:
        handler = self.handler_for_url(url)
        return handler is not None and handler.is_remote

    def is_audio_url(self, url: str) -> bool:
        handler = self.handler_for_url(url)
        return handler is not None and handler.is_audio_url(url)

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __contains__(self, scheme: str) -> bool:
        return scheme.lower() in self._handlers


def default_registry() -> ProtocolHandlerRegistry:
    """Registry with the built-in http/https/mms handlers."""
    registry = ProtocolHandlerRegistry()
    registry.register(HttpHandler())
    registry.register(MmsHandler())
    return registry

