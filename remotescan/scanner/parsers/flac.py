"""
FLAC header parser (streaming).

Walks the metadata blocks at the start of a FLAC stream until the last one.
STREAMINFO is decoded with mutagen.

Live FLAC streams joined mid-way have no header at all; that is not an error.
The track is then flagged so the player re-derives the initial block for
every stream start.
"""

from __future__ import annotations

import logging
import struct

from mutagen import MutagenError
from mutagen.flac import StreamInfo

from remotescan.core.records import InitialBlock
from remotescan.scanner.parsers.base import (
    NEED_MORE,
    Done,
    FormatInfo,
    ParseOutcome,
    StreamParser,
)

logger = logging.getLogger(__name__)

FLAC_MAGIC = b"fLaC"
STREAMINFO = 0

# Give up waiting for the end of the metadata blocks after this many bytes
MAX_HEADER_SIZE = 16 * 1024 * 1024


def id3v2_size(data: bytes | bytearray) -> int | None:
    """
    Total size of a leading ID3v2 tag (header included).

    Returns None if `data` does not start with a complete ID3v2 header.
    """
    if len(data) < 10 or data[:3] != b"ID3":
        return None
    b0, b1, b2, b3 = data[6:10]
    return (((b0 << 7 | b1) << 7 | b2) << 7 | b3) + 10


def estimate_bitrate(samplerate: int, samplesize: int, channels: int) -> int:
    """Conservative bitrate guess for compressed lossless audio."""
    return int(0.6 * samplerate * samplesize * channels)


class FlacParser(StreamParser):
    def feed(self, chunk: bytes) -> ParseOutcome:
        eof = not chunk
        self.buffer.extend(chunk)
        result = self._parse()
        if result is None:
            if eof or len(self.buffer) > MAX_HEADER_SIZE:
                return self._no_header()
            return NEED_MORE
        return result

    def _no_header(self) -> ParseOutcome:
        logger.debug("No FLAC header found in %s, initial block needed for every start", self.meta.url)
        return Done(FormatInfo(content_type="flc", initial_block_type=InitialBlock.ALWAYS))

    def _parse(self) -> ParseOutcome | None:
        data = self.buffer
        start = 0
        if data[:3] == b"ID3":
            tag_size = id3v2_size(data)
            if tag_size is None:
                return None
            start = tag_size

        if len(data) < start + 4:
            return None
        if data[start : start + 4] != FLAC_MAGIC:
            return self._no_header()

        pos = start + 4
        stream_info: StreamInfo | None = None
        while True:
            if len(data) < pos + 4:
                return None
            header = struct.unpack_from(">I", data, pos)[0]
            is_last = bool(header >> 31)
            block_type = (header >> 24) & 0x7F
            length = header & 0x00FFFFFF
            block_end = pos + 4 + length
            if len(data) < block_end:
                return None

            if block_type == STREAMINFO:
                try:
                    stream_info = StreamInfo(bytes(data[pos + 4 : block_end]))
                except MutagenError as e:
                    logger.debug("Bad FLAC STREAMINFO in %s: %s", self.meta.url, e)
                    return self._no_header()

            pos = block_end
            if is_last:
                break

        if stream_info is None or not stream_info.sample_rate:
            return self._no_header()

        return Done(self._info(stream_info, audio_offset=pos))

    def _info(self, stream_info: StreamInfo, audio_offset: int) -> FormatInfo:
        samplerate = int(stream_info.sample_rate)
        samplesize = int(stream_info.bits_per_sample)
        channels = int(stream_info.channels)
        duration_ms = int(stream_info.length * 1000) if stream_info.length else None

        bitrate = None
        length = self.meta.content_length
        if length and duration_ms:
            bitrate = int((length - audio_offset) * 8 * 1000 / duration_ms)
        if not bitrate or bitrate <= 0:
            # no average bitrate, guess one so seeking works
            bitrate = estimate_bitrate(samplerate, samplesize, channels)

        logger.debug(
            "flc: %dHz, %dBits, %dch => bitrate: %dkbps",
            samplerate,
            samplesize,
            channels,
            bitrate // 1000,
        )
        # audio offset/size are not reliable from a partial read, leave them unset
        return FormatInfo(
            content_type="flc",
            samplerate=samplerate,
            samplesize=samplesize,
            channels=channels,
            avg_bitrate=bitrate,
            duration_ms=duration_ms,
            initial_block_type=InitialBlock.ONSEEK,
        )
