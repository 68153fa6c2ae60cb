"""
MP4 header parser (streaming, retryable).

Walks the top-level boxes of an MP4 stream looking for `moov`:

- `moov` before `mdat` (a "fast start" file): parse `moov`, then continue
  until the `mdat` header to learn where audio data begins.
- `mdat` before `moov`: the header is at the end of the file. We remember
  where `mdat` sits and ask to be restarted after it (`Retry`); the track
  then needs its initial block rebuilt on every start.

From `moov` we read the movie duration and, for every sound track, the sample
entry (`mp4a`, `alac`, `drms`, ...) with its `esds` or ALAC config. The
header boxes are returned as the initial block for the decoder.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from remotescan.core.records import InitialBlock
from remotescan.scanner.parsers.base import (
    NEED_MORE,
    Done,
    Failed,
    FormatInfo,
    ParseOutcome,
    ResponseMeta,
    Retry,
    StreamParser,
)

logger = logging.getLogger(__name__)

# Containers whose children we walk while looking for sound tracks
_CONTAINERS = {b"trak", b"mdia", b"minf", b"stbl"}

# Give up if `moov` is still incomplete after this many bytes
MAX_MOOV_SIZE = 32 * 1024 * 1024

ALAC_DEFAULT_BITRATE = 850_000


@dataclass
class Mp4Track:
    encoding: str
    samplerate: int | None = None
    channels: int | None = None
    bits_per_sample: int | None = None
    audio_object_type: int | None = None
    avg_bitrate: int | None = None


class Mp4FormatError(ValueError):
    pass


def _box_header(data: bytes | bytearray | memoryview, pos: int, end: int) -> tuple[bytes, int, int] | None:
    """
    Read a box header at `pos`.

    Returns `(type, header_length, box_size)` (size 0 = "to end of file"),
    or None if the header is not complete yet.
    """
    if pos + 8 > end:
        return None
    size, box_type = struct.unpack_from(">I4s", data, pos)
    header_len = 8
    if size == 1:
        if pos + 16 > end:
            return None
        size = struct.unpack_from(">Q", data, pos + 8)[0]
        header_len = 16
    if size != 0 and size < header_len:
        raise Mp4FormatError(f"Invalid size {size} for box {box_type!r}")
    return bytes(box_type), header_len, size


def _iter_boxes(data: bytes, start: int, end: int):
    pos = start
    while pos < end:
        header = _box_header(data, pos, end)
        if header is None:
            return
        box_type, header_len, size = header
        box_end = end if size == 0 else min(pos + size, end)
        yield box_type, pos + header_len, box_end
        pos = box_end


def _descriptor(data: bytes, pos: int, end: int) -> tuple[int, int, int]:
    """Read an MPEG-4 descriptor header; returns `(tag, payload_pos, payload_end)`."""
    tag = data[pos]
    pos += 1
    length = 0
    for _ in range(4):
        if pos >= end:
            break
        b = data[pos]
        pos += 1
        length = (length << 7) | (b & 0x7F)
        if not b & 0x80:
            break
    return tag, pos, min(pos + length, end)


def _parse_esds(data: bytes, pos: int, end: int, track: Mp4Track) -> None:
    pos += 4  # version + flags
    if pos >= end:
        return
    tag, pos, es_end = _descriptor(data, pos, end)
    if tag != 0x03 or pos + 3 > es_end:
        return
    flags = data[pos + 2]
    pos += 3
    if flags & 0x80:
        pos += 2
    if flags & 0x40 and pos < es_end:
        pos += data[pos] + 1
    if flags & 0x20:
        pos += 2

    while pos < es_end:
        tag, payload, payload_end = _descriptor(data, pos, es_end)
        if tag == 0x04 and payload + 13 <= payload_end:
            avg_bitrate = struct.unpack_from(">I", data, payload + 9)[0]
            if avg_bitrate:
                track.avg_bitrate = avg_bitrate
            # DecoderSpecificInfo follows the 13 fixed bytes
            inner = payload + 13
            while inner < payload_end:
                inner_tag, asc, asc_end = _descriptor(data, inner, payload_end)
                if inner_tag == 0x05 and asc < asc_end:
                    aot = data[asc] >> 3
                    if aot == 31 and asc + 1 < asc_end:
                        aot = 32 + (((data[asc] & 0x07) << 3) | (data[asc + 1] >> 5))
                    track.audio_object_type = aot
                inner = asc_end
            return
        pos = payload_end


def _parse_alac_config(data: bytes, pos: int, end: int, track: Mp4Track) -> None:
    # version/flags, then the ALACSpecificConfig
    if pos + 28 > end:
        return
    bit_depth = data[pos + 9]
    channels = data[pos + 13]
    avg_bitrate, samplerate = struct.unpack_from(">II", data, pos + 20)
    track.bits_per_sample = bit_depth or track.bits_per_sample
    track.channels = channels or track.channels
    track.samplerate = samplerate or track.samplerate
    track.avg_bitrate = avg_bitrate or track.avg_bitrate


def _parse_stsd(data: bytes, pos: int, end: int) -> Mp4Track | None:
    # version/flags + entry count, then the first sample entry
    entry = _box_header(data, pos + 8, end)
    if entry is None:
        return None
    encoding, header_len, size = entry
    entry_pos = pos + 8 + header_len
    entry_end = min(pos + 8 + size, end) if size else end
    if entry_pos + 28 > entry_end:
        return Mp4Track(encoding=encoding.decode("latin-1"))

    version = struct.unpack_from(">H", data, entry_pos + 8)[0]
    channels, samplesize = struct.unpack_from(">HH", data, entry_pos + 16)
    samplerate = struct.unpack_from(">I", data, entry_pos + 24)[0] >> 16
    track = Mp4Track(
        encoding=encoding.decode("latin-1"),
        samplerate=samplerate or None,
        channels=channels or None,
        bits_per_sample=samplesize or None,
    )

    children = entry_pos + 28 + {1: 16, 2: 36}.get(version, 0)
    for box_type, child_pos, child_end in _iter_boxes(data, children, entry_end):
        if box_type == b"esds":
            _parse_esds(data, child_pos, child_end, track)
        elif box_type == b"alac":
            _parse_alac_config(data, child_pos, child_end, track)
    return track


def _parse_trak(data: bytes, pos: int, end: int) -> Mp4Track | None:
    handler: bytes | None = None
    track: Mp4Track | None = None

    def walk(start: int, stop: int) -> None:
        nonlocal handler, track
        for box_type, child_pos, child_end in _iter_boxes(data, start, stop):
            if box_type in _CONTAINERS:
                walk(child_pos, child_end)
            elif box_type == b"hdlr" and child_pos + 12 <= child_end:
                handler = bytes(data[child_pos + 8 : child_pos + 12])
            elif box_type == b"stsd":
                track = _parse_stsd(data, child_pos, child_end)

    walk(pos, end)
    if handler != b"soun":
        return None
    return track


def _parse_mvhd(data: bytes, pos: int, end: int) -> int | None:
    """Movie duration in ms."""
    if pos + 4 > end:
        return None
    version = data[pos]
    if version == 1:
        if pos + 32 > end:
            return None
        timescale, duration = struct.unpack_from(">IQ", data, pos + 20)
    else:
        if pos + 20 > end:
            return None
        timescale, duration = struct.unpack_from(">II", data, pos + 12)
    if not timescale:
        return None
    return int(duration * 1000 / timescale)


class Mp4Parser(StreamParser):
    def __init__(self, meta: ResponseMeta) -> None:
        super().__init__(meta)
        # absolute stream offset of self.buffer[0]
        self.base = 0
        self.pos = 0
        self.skip = 0
        self.retried = False
        self.ftyp: bytes = b""
        self.moov: bytes | None = None
        self.mdat: tuple[int, int] | None = None  # (payload offset, payload size)
        self.duration_ms: int | None = None
        self.tracks: list[Mp4Track] = []

    def resume(self, offset: int, meta: ResponseMeta) -> None:
        self.buffer.clear()
        self.skip = 0
        self.base = offset
        self.pos = offset
        self.retried = True
        # the ranged response only knows the remaining length
        if meta.total_length is None and self.meta.total_length is not None:
            meta = ResponseMeta(
                url=meta.url,
                content_type=meta.content_type,
                content_length=meta.content_length,
                total_length=self.meta.total_length,
                max_wma_rate=meta.max_wma_rate,
            )
        self.meta = meta

    def feed(self, chunk: bytes) -> ParseOutcome:
        eof = not chunk
        if self.skip:
            dropped = min(self.skip, len(chunk))
            self.skip -= dropped
            chunk = chunk[dropped:]
            if not chunk and not eof:
                return NEED_MORE
        self.buffer.extend(chunk)
        try:
            outcome = self._walk()
        except Mp4FormatError as e:
            logger.error("Unable to parse mp4 header of %s: %s", self.meta.url, e)
            return Failed(str(e))
        if outcome is NEED_MORE and eof:
            return Failed("Stream ended before the mp4 header was complete")
        return outcome

    def _walk(self) -> ParseOutcome:
        while True:
            rel = self.pos - self.base
            header = _box_header(self.buffer, rel, len(self.buffer))
            if header is None:
                return NEED_MORE
            box_type, header_len, size = header

            if self.pos == 0 and box_type != b"ftyp":
                raise Mp4FormatError(f"Stream does not start with ftyp ({box_type!r})")
            if not box_type.isascii() or not box_type.replace(b" ", b"").isalnum():
                raise Mp4FormatError(f"Garbage box type {box_type!r} at {self.pos}")

            if box_type == b"mdat":
                payload = self.pos + header_len
                total = self.meta.total_length or self.meta.content_length
                payload_size = (size - header_len) if size else ((total or payload) - payload)
                self.mdat = (payload, payload_size)
                if self.moov is None:
                    if not size:
                        raise Mp4FormatError("mdat runs to end of file and no moov was found")
                    logger.info(
                        "'mdat' reached before 'moov' at %d => seeking with bytes=%d-",
                        self.pos,
                        self.pos + size,
                    )
                    return Retry(self.pos + size)
                return self._done()

            if size == 0:
                raise Mp4FormatError(f"Box {box_type!r} runs to end of file")

            if box_type in (b"ftyp", b"moov"):
                if size > MAX_MOOV_SIZE:
                    raise Mp4FormatError(f"{box_type!r} box too large ({size})")
                if len(self.buffer) < rel + size:
                    return NEED_MORE
                raw = bytes(self.buffer[rel : rel + size])
                if box_type == b"ftyp":
                    self.ftyp = raw
                else:
                    self._parse_moov(raw, header_len)
                    if self.mdat is not None:
                        # moov after mdat (ranged re-request)
                        return self._done()
            elif len(self.buffer) < rel + size:
                # skip boxes we don't care about without keeping them around
                self.skip = rel + size - len(self.buffer)
                self.buffer.clear()
                self.base = self.pos = self.pos + size
                return NEED_MORE

            self.pos += size

    def _parse_moov(self, raw: bytes, header_len: int) -> None:
        self.moov = raw
        for box_type, pos, end in _iter_boxes(raw, header_len, len(raw)):
            if box_type == b"mvhd":
                self.duration_ms = _parse_mvhd(raw, pos, end)
            elif box_type == b"trak":
                track = _parse_trak(raw, pos, end)
                if track is not None:
                    self.tracks.append(track)
        logger.debug("mp4 moov: %d sound track(s), duration %s ms", len(self.tracks), self.duration_ms)

    def _done(self) -> ParseOutcome:
        if not self.tracks:
            logger.warning("No playable track found in %s", self.meta.url)
            return Failed("No playable track found")

        assert self.mdat is not None
        audio_offset, audio_size = self.mdat

        # some mp4 files have a wrong mdat length
        total = self.meta.total_length or self.meta.content_length
        if total and audio_offset + audio_size > total:
            logger.warning(
                "Inconsistent audio offset/size %d+%d and content length %d",
                audio_offset,
                audio_size,
                total,
            )
            audio_size = total - audio_offset

        first = self.tracks[0]
        content_type = "mp4"
        samplesize = first.bits_per_sample
        duration_s = self.duration_ms / 1000 if self.duration_ms else None
        bitrate = first.avg_bitrate
        hints: dict[str, object] = {}

        if first.encoding == "alac":
            content_type = "alc"
            hints["lossless"] = True
            # header bitrate is unreliable here
            bitrate = int(audio_size * 8 / duration_s) if duration_s else ALAC_DEFAULT_BITRATE
        elif first.encoding == "drms":
            hints["drm"] = True

        # HD-AAC: AAC-LC core plus an SLS enhancement track
        if first.audio_object_type is not None and len(self.tracks) > 1:
            second = self.tracks[1]
            if first.audio_object_type == 2 and second.audio_object_type == 37:
                samplesize = second.bits_per_sample
                content_type = "sls"
                hints["hd_aac"] = True

        if not bitrate and duration_s and audio_size > 0:
            bitrate = int(audio_size * 8 / duration_s)

        initial_block_type = InitialBlock.ALWAYS if self.retried else InitialBlock.ONSEEK
        logger.debug(
            "mp4: %sHz, %sBits, %sch => bitrate: %skbps (ofs:%d, len:%d)",
            first.samplerate,
            samplesize,
            first.channels,
            bitrate // 1000 if bitrate else "?",
            audio_offset,
            audio_size,
        )
        return Done(
            FormatInfo(
                content_type=content_type,
                samplerate=first.samplerate,
                samplesize=samplesize,
                channels=first.channels,
                avg_bitrate=bitrate,
                duration_ms=self.duration_ms,
                audio_offset=audio_offset,
                audio_size=audio_size,
                initial_block=self.ftyp + (self.moov or b""),
                initial_block_type=initial_block_type,
                hints=hints,
            )
        )
