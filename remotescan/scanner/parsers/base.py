"""
Parser outcomes, the FormatInfo result and the streaming parser base class.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from remotescan.core import ScanErrorCode
from remotescan.core.records import InitialBlock


@dataclass
class FormatInfo:
    """
    What a parser found out about a stream.

    Fields left as None are unknown. `hints` carries format specific extras
    (ASF stream numbers, lossless/HD-AAC/DRM flags).
    """

    content_type: str | None = None
    samplerate: int | None = None
    samplesize: int | None = None
    channels: int | None = None
    avg_bitrate: int | None = None
    vbr: bool = False
    duration_ms: int | None = None
    audio_offset: int | None = None
    audio_size: int | None = None
    block_alignment: int | None = None
    endian: int | None = None
    initial_block: bytes | None = None
    initial_block_type: InitialBlock | None = None
    hints: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NeedMore:
    pass


@dataclass(frozen=True, slots=True)
class Done:
    info: FormatInfo


@dataclass(frozen=True, slots=True)
class Retry:
    offset: int


@dataclass(frozen=True, slots=True)
class Failed:
    reason: str
    code: ScanErrorCode = ScanErrorCode.PARSE_FAILURE


ParseOutcome = NeedMore | Done | Retry | Failed

NEED_MORE = NeedMore()


@dataclass(frozen=True, slots=True)
class ResponseMeta:
    """Response metadata parsers may consult."""

    url: str = ""
    content_type: str | None = None
    content_length: int | None = None
    total_length: int | None = None
    max_wma_rate: int = 9999


class StreamParser:
    """Base class for chunk-fed parsers."""

    def __init__(self, meta: ResponseMeta) -> None:
        self.meta = meta
        self.buffer = bytearray()

    def feed(self, chunk: bytes) -> ParseOutcome:
        raise NotImplementedError

    def resume(self, offset: int, meta: ResponseMeta) -> None:
        """Continue on a new response that starts at byte `offset` (after `Retry`)."""
        raise NotImplementedError(f"{type(self).__name__} cannot resume")


@dataclass(frozen=True, slots=True)
class ParserSpec:
    """
    Dispatch entry for one content type.

    Attributes:
        read_limit: Bytes to read for a bounded parser; None for streaming ones.
        parse: `parse(data, meta)` for bounded parsers.
        stream: `StreamParser` subclass for streaming parsers.
    """

    read_limit: int | None = None
    parse: Callable[[bytes, ResponseMeta], ParseOutcome] | None = None
    stream: type[StreamParser] | None = None

    @property
    def streaming(self) -> bool:
        return self.stream is not None
