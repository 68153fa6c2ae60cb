"""
Core domain package.

This package contains the record model, the format registry and the playlist
readers. None of it knows about HTTP; the scanner package wires these pieces
to the network.

We intentionally keep exports minimal; consumers should usually import from the
specific module they need (e.g. `remotescan.core.records`).
"""

from __future__ import annotations

from enum import Enum

__all__: list[str] = [
    "CoreError",
    "InvalidURLError",
    "NestedTooDeepError",
    "NoURLError",
    "ParseFailureError",
    "PlaylistEmptyError",
    "ScanError",
    "ScanErrorCode",
    "TransportError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""


class ScanErrorCode(str, Enum):
    """Symbolic error codes surfaced to whoever asked for a scan."""

    NO_URL = "SCANNER_REMOTE_NO_URL_PROVIDED"
    INVALID_URL = "SCANNER_REMOTE_INVALID_URL"
    NESTED_TOO_DEEP = "SCANNER_REMOTE_NESTED_TOO_DEEP"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    ASF_UNABLE_TO_PARSE = "ASF_UNABLE_TO_PARSE"
    PARSE_FAILURE = "PARSE_FAILURE"
    PLAYLIST_NO_ITEMS_FOUND = "PLAYLIST_NO_ITEMS_FOUND"


class ScanError(CoreError):
    """
    A remote scan failed.

    Attributes:
        code: Symbolic error code.
        message: Optional human readable detail (e.g. the transport error text).
    """

    default_code = ScanErrorCode.PARSE_FAILURE

    def __init__(self, message: str = "", *, code: ScanErrorCode | None = None) -> None:
        self.code = code or self.default_code
        self.message = message
        super().__init__(message or self.code.value)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class NoURLError(ScanError):
    default_code = ScanErrorCode.NO_URL


class InvalidURLError(ScanError):
    default_code = ScanErrorCode.INVALID_URL


class NestedTooDeepError(ScanError):
    default_code = ScanErrorCode.NESTED_TOO_DEEP


class TransportError(ScanError):
    """Network or connect failure; the message carries the underlying error."""

    default_code = ScanErrorCode.TRANSPORT_ERROR


class ParseFailureError(ScanError):
    """A container header could not be parsed (ASF, WAV/AIFF, MP4)."""

    default_code = ScanErrorCode.PARSE_FAILURE


class PlaylistEmptyError(ScanError):
    default_code = ScanErrorCode.PLAYLIST_NO_ITEMS_FOUND
