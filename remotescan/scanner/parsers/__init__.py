"""
Container header parsers.

Every parser is a plain function over bytes plus a little response metadata
and returns one tagged outcome:

- `NeedMore`: feed me the next chunk (streaming parsers only)
- `Done(info)`: finished, disconnect now
- `Retry(offset)`: re-request the resource from `offset` (MP4 only)
- `Failed(reason)`: the header is unusable

Bounded parsers get the whole (truncated) body at once. Streaming parsers are
stateful objects fed one chunk at a time; an empty chunk means end of stream.

`PARSERS` maps a content type to its `ParserSpec`. Types without an entry go
through the generic MP3/ID3 bitrate path.
"""

from __future__ import annotations

from remotescan.scanner.parsers.aac import parse_aac
from remotescan.scanner.parsers.asf import parse_asf
from remotescan.scanner.parsers.base import (
    NEED_MORE,
    Done,
    Failed,
    FormatInfo,
    NeedMore,
    ParseOutcome,
    ParserSpec,
    ResponseMeta,
    Retry,
    StreamParser,
)
from remotescan.scanner.parsers.flac import FlacParser
from remotescan.scanner.parsers.mp4 import Mp4Parser
from remotescan.scanner.parsers.ogg import parse_ogg
from remotescan.scanner.parsers.wav import WavParser

PARSERS: dict[str, ParserSpec] = {
    "wma": ParserSpec(read_limit=128 * 1024, parse=parse_asf),
    "aac": ParserSpec(read_limit=4 * 1024, parse=parse_aac),
    "ogg": ParserSpec(read_limit=64, parse=parse_ogg),
    "flc": ParserSpec(stream=FlacParser),
    "wav": ParserSpec(stream=WavParser),
    "aif": ParserSpec(stream=WavParser),
    "mp4": ParserSpec(stream=Mp4Parser),
}


def parser_for(content_type: str | None) -> ParserSpec | None:
    """Return the parser for a content type (None = generic bitrate path)."""
    if not content_type:
        return None
    return PARSERS.get(content_type)


__all__ = [
    "Done",
    "Failed",
    "FormatInfo",
    "NEED_MORE",
    "NeedMore",
    "PARSERS",
    "ParseOutcome",
    "ParserSpec",
    "ResponseMeta",
    "Retry",
    "StreamParser",
    "parser_for",
]
