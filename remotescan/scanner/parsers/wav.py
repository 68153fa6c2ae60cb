"""
WAV and AIFF header parser (streaming).

Reads chunks until both the format chunk (`fmt ` / `COMM`) and the start of
the audio chunk (`data` / `SSND`) are known. Unlike FLAC there is no
fallback: PCM without a header cannot be played, so a missing or broken
header fails the scan.

The header bytes (everything before the first audio sample) are handed back
as the initial block, replayed by the player when it seeks.
"""

from __future__ import annotations

import logging
import struct

from mutagen.aiff import read_float

from remotescan.core.records import InitialBlock
from remotescan.scanner.parsers.base import (
    NEED_MORE,
    Done,
    Failed,
    FormatInfo,
    ParseOutcome,
    StreamParser,
)

logger = logging.getLogger(__name__)

MAX_HEADER_SIZE = 1024 * 1024


class WavParser(StreamParser):
    """Parser for both `wav` and `aif` content."""

    def feed(self, chunk: bytes) -> ParseOutcome:
        eof = not chunk
        self.buffer.extend(chunk)

        if len(self.buffer) < 12:
            return self._incomplete(eof)

        form = bytes(self.buffer[:4])
        if form == b"RIFF" and self.buffer[8:12] == b"WAVE":
            result = self._parse_wav()
        elif form == b"FORM" and self.buffer[8:12] in (b"AIFF", b"AIFC"):
            result = self._parse_aiff()
        else:
            return Failed(f"Unknown header magic {form!r}")

        if result is None:
            return self._incomplete(eof)
        return result

    def _incomplete(self, eof: bool) -> ParseOutcome:
        if eof:
            return Failed("Stream ended before the audio data chunk")
        if len(self.buffer) > MAX_HEADER_SIZE:
            return Failed("No audio data chunk found")
        return NEED_MORE

    def _chunks(self, byteorder: str):
        """Yield `(chunk_id, payload_offset, size)` for each complete chunk header."""
        data = self.buffer
        fmt = "<4sI" if byteorder == "little" else ">4sI"
        pos = 12
        while pos + 8 <= len(data):
            chunk_id, size = struct.unpack_from(fmt, data, pos)
            yield chunk_id, pos + 8, size
            pos += 8 + size + (size & 1)

    def _audio_size(self, offset: int, declared: int) -> int:
        # live/streamed files often declare 0 or 0xFFFFFFFF
        total = self.meta.total_length or self.meta.content_length
        if declared in (0, 0xFFFFFFFF) and total:
            return total - offset
        return declared

    def _parse_wav(self) -> ParseOutcome | None:
        data = self.buffer
        fmt: tuple[int, int, int] | None = None

        for chunk_id, pos, size in self._chunks("little"):
            if chunk_id == b"fmt ":
                if pos + 16 > len(data):
                    return None
                _tag, channels, samplerate, _byte_rate, _align, bits = struct.unpack_from(
                    "<HHIIHH", data, pos
                )
                fmt = (channels, samplerate, bits)
            elif chunk_id == b"data":
                if fmt is None:
                    return Failed("WAV data chunk before fmt chunk")
                return self._done("wav", fmt, audio_offset=pos, audio_size=size, endian=0)
        return None

    def _parse_aiff(self) -> ParseOutcome | None:
        data = self.buffer
        fmt: tuple[int, int, int] | None = None
        endian = 1

        for chunk_id, pos, size in self._chunks("big"):
            if chunk_id == b"COMM":
                if pos + 18 > len(data):
                    return None
                channels, _frames, bits = struct.unpack_from(">HIH", data, pos)
                try:
                    samplerate = int(read_float(bytes(data[pos + 8 : pos + 18])))
                except OverflowError:
                    return Failed("AIFF sample rate out of range")
                if data[8:12] == b"AIFC" and size >= 22:
                    if pos + 22 > len(data):
                        return None
                    compression = bytes(data[pos + 18 : pos + 22])
                    # byte-swapped PCM
                    if compression == b"sowt":
                        endian = 0
                fmt = (channels, samplerate, bits)
            elif chunk_id == b"SSND":
                if fmt is None:
                    return Failed("AIFF SSND chunk before COMM chunk")
                if pos + 8 > len(data):
                    return None
                offset = struct.unpack_from(">I", data, pos)[0]
                audio_offset = pos + 8 + offset
                # a streamed SSND declares no size; keep the raw value for _audio_size
                audio_size = size if size in (0, 0xFFFFFFFF) else size - 8 - offset
                return self._done("aif", fmt, audio_offset=audio_offset, audio_size=audio_size, endian=endian)
        return None

    def _done(
        self,
        content_type: str,
        fmt: tuple[int, int, int],
        *,
        audio_offset: int,
        audio_size: int,
        endian: int,
    ) -> ParseOutcome:
        channels, samplerate, bits = fmt
        if not channels or not samplerate or not bits:
            return Failed(f"Invalid {content_type} format chunk")

        audio_size = self._audio_size(audio_offset, audio_size)
        bitrate = samplerate * bits * channels
        duration_ms = int(audio_size * 8 * 1000 / bitrate) if audio_size > 0 else None

        logger.debug(
            "%s: %dHz, %dBits, %dch => bitrate: %dkbps (ofs: %d, len: %d)",
            content_type,
            samplerate,
            bits,
            channels,
            bitrate // 1000,
            audio_offset,
            audio_size,
        )
        return Done(
            FormatInfo(
                content_type=content_type,
                samplerate=samplerate,
                samplesize=bits,
                channels=channels,
                avg_bitrate=bitrate,
                duration_ms=duration_ms,
                audio_offset=audio_offset,
                audio_size=audio_size,
                block_alignment=channels * bits // 8,
                endian=endian,
                initial_block=bytes(self.buffer[:audio_offset]),
                initial_block_type=InitialBlock.ONSEEK,
            )
        )
