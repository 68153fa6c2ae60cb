"""
Remote scanner package.

Components:
- RemoteScanner: entry point, resolves a URL to a track or playlist record
- PlaylistResolver: expands playlist bodies and races their entries
- ScanRequest / ScanSession: per-request callbacks and the caller's handle
- HttpConnection: streaming httpx transport with manual redirects
"""

from remotescan.scanner.context import MAX_DEPTH, ScanContext, ScanRequest, ScanSession
from remotescan.scanner.playlist import PlaylistResolver
from remotescan.scanner.remote import RemoteScanner
from remotescan.scanner.transport import HttpConnection, ResponseInfo

__all__ = [
    "MAX_DEPTH",
    "HttpConnection",
    "PlaylistResolver",
    "RemoteScanner",
    "ResponseInfo",
    "ScanContext",
    "ScanRequest",
    "ScanSession",
]
