"""
Generic audio stream parser (MP3 and friends).

Used for every audio type without a dedicated header parser. It buffers the
start of the stream to a temp file and, once enough has been read, asks
mutagen for the bitrate. For MP3 that means reading past a leading ID3v2 tag,
which can be large (embedded artwork), so the read budget is extended to the
full tag plus some audio frames.

A bitrate scan failure is not an error; the track simply stays without a
bitrate.
"""

from __future__ import annotations

import logging

from mutagen import MutagenError
from mutagen.mp3 import MP3, BitrateMode

from remotescan.scanner.buffer import BufferState
from remotescan.scanner.parsers.base import (
    NEED_MORE,
    Done,
    FormatInfo,
    ParseOutcome,
    ResponseMeta,
    StreamParser,
)
from remotescan.scanner.parsers.flac import id3v2_size

logger = logging.getLogger(__name__)

DEFAULT_READ_BUDGET = 128 * 1024

# Audio read after an ID3v2 tag to have enough frames for a bitrate
ID3_TRAILER = 16 * 1024

# Types mutagen's MPEG scanner can measure
SCANNABLE_TYPES = frozenset({"mp3", "mp2"})


def id3v2_read_budget(first_chunk: bytes | bytearray) -> int:
    """
    Bytes to read for a bitrate scan, given the first chunk of the stream.

    A leading ID3v2 tag is read completely, followed by 16 KiB of audio.
    """
    tag_size = id3v2_size(first_chunk)
    if tag_size is None:
        return DEFAULT_READ_BUDGET
    return tag_size + ID3_TRAILER


def scan_bitrate(state: BufferState, url: str) -> tuple[int | None, bool]:
    """Run mutagen's MPEG scanner over the buffered data; returns `(bitrate, vbr)`."""
    fh = state.rewind()
    try:
        audio = MP3(fh)
    except MutagenError as e:
        logger.error("Unable to scan bitrate for %s: %s", url, e)
        return None, False
    finally:
        fh.seek(0, 2)

    bitrate = int(audio.info.bitrate or 0)
    if bitrate <= 0:
        return None, False
    return bitrate, audio.info.bitrate_mode == BitrateMode.VBR


class AudioStreamParser(StreamParser):
    """
    Budgeted bitrate scanner.

    Every chunk is buffered in full, even when it crosses the end of the budget;
    the scan runs once the budget is used up or the stream ends.
    """

    def __init__(self, meta: ResponseMeta, state: BufferState) -> None:
        super().__init__(meta)
        self.state = state
        self.content_type: str | None = None
        if not state.spill_path:
            state.spill()
            logger.debug("Buffering audio stream data for %s", meta.url)

    def feed(self, chunk: bytes) -> ParseOutcome:
        state = self.state

        if chunk:
            state.append(chunk)
            if state.first_chunk:
                state.first_chunk = False
                state.remaining = id3v2_read_budget(chunk)
                if id3v2_size(chunk) is not None:
                    logger.debug("ID3v2 tag detected, will read %d bytes", state.remaining)
                    # last chance to set the content type if missing
                    if not self.meta.content_type:
                        self.content_type = "mp3"
            state.consume_budget(len(chunk))
            if state.remaining is None or state.remaining > 0:
                return NEED_MORE

        scan_type = self.content_type or self.meta.content_type
        if scan_type in SCANNABLE_TYPES:
            bitrate, vbr = scan_bitrate(state, self.meta.url)
        else:
            logger.debug("Unable to parse audio data for %s file", scan_type)
            bitrate, vbr = None, False

        result = FormatInfo(content_type=self.content_type, avg_bitrate=bitrate, vbr=vbr)
        length = self.meta.content_length
        if bitrate and length:
            result.duration_ms = int(length * 8 * 1000 / bitrate)
        return Done(result)
