"""
Protocol handlers for remote URLs.

A protocol handler owns a URL scheme. The scanner asks the registry for the
handler of every URL it is given:
- URLs without a handler (or whose handler is not remote) are rejected.
- A handler may declare `scan_stream`, in which case the scanner delegates the
  whole scan to it and does nothing else.
- A handler may declare its URLs to always be audio (`is_audio_url`), which
  skips the network round trip.
"""

from __future__ import annotations

from remotescan.protocols.handlers import (
    HttpHandler,
    MmsHandler,
    ProtocolHandler,
    ProtocolHandlerRegistry,
    default_registry,
    random_guid,
)

__all__ = [
    "HttpHandler",
    "MmsHandler",
    "ProtocolHandler",
    "ProtocolHandlerRegistry",
    "default_registry",
    "random_guid",
]
