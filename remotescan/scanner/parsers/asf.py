"""
ASF (WMA) header parser.

Reads the top-level header objects of an ASF stream and picks the audio
stream to play:
- File Properties: max bitrate, play duration, preroll
- Stream Properties: stream number, stream type, WAVEFORMATEX of audio streams
- Stream Bitrate Properties: average bitrate per stream
- Header Extension / Extended Stream Properties: bitrates and streams that
  are only declared there (common with multi-bitrate live streams)

Only two audio codecs are playable by the players: WMA v7/8/9 (0x0161) and
WMA 9 Voice (0x000A).
"""

from __future__ import annotations

import logging
import struct
import uuid
from dataclasses import dataclass
from typing import Any

from remotescan.core import ScanErrorCode
from remotescan.scanner.parsers.base import Done, Failed, FormatInfo, ParseOutcome, ResponseMeta

logger = logging.getLogger(__name__)

ASF_HEADER = uuid.UUID("75b22630-668e-11cf-a6d9-00aa0062ce6c")
ASF_FILE_PROPERTIES = uuid.UUID("8cabdca1-a947-11cf-8ee4-00c00c205365")
ASF_STREAM_PROPERTIES = uuid.UUID("b7dc0791-a9b7-11cf-8ee6-00c00c205365")
ASF_STREAM_BITRATE_PROPERTIES = uuid.UUID("7bf875ce-468d-11d1-8d82-006097c9a2b2")
ASF_HEADER_EXTENSION = uuid.UUID("5fbf03b5-a92e-11cf-8ee3-00c00c205365")
ASF_EXTENDED_STREAM_PROPERTIES = uuid.UUID("14e6a5cb-c672-4332-8399-a96952065b5a")

ASF_AUDIO_MEDIA = uuid.UUID("f8699e40-5b4d-11cf-a8fd-00805f5c442b")
ASF_COMMAND_MEDIA = uuid.UUID("59dacfc0-59e6-11d0-a3ac-00a0c90348f6")

PLAYABLE_CODECS = frozenset({0x0161, 0x000A})

# Servers using the MMS-over-HTTP framing prefix the header with a 12 byte chunk header
CHUNK_HEADER_TYPE = 0x4824
CHUNK_HEADER_SIZE = 12

_OBJECT_HEADER = struct.Struct("<16sQ")


@dataclass
class AsfStream:
    stream_number: int
    stream_type: str = "unknown"
    codec_id: int | None = None
    channels: int | None = None
    samplerate: int | None = None
    samplesize: int | None = None
    bitrate: int = 0


def _guid(data: bytes | memoryview) -> uuid.UUID:
    return uuid.UUID(bytes_le=bytes(data))


def _iter_objects(data: memoryview, start: int, end: int):
    """Yield `(guid, payload_offset, object_end)` for each object in `data[start:end]`."""
    pos = start
    while pos + _OBJECT_HEADER.size <= end:
        raw_guid, size = _OBJECT_HEADER.unpack_from(data, pos)
        if size < _OBJECT_HEADER.size:
            logger.debug("Bad ASF object size %d at %d", size, pos)
            return
        obj_end = min(pos + size, end)
        yield _guid(raw_guid), pos + _OBJECT_HEADER.size, obj_end
        pos += size


class _AsfHeader:
    def __init__(self) -> None:
        self.max_bitrate: int | None = None
        self.song_length_ms: int | None = None
        self.streams: dict[int, AsfStream] = {}
        self.order: list[int] = []

    def stream(self, number: int) -> AsfStream:
        if number not in self.streams:
            self.streams[number] = AsfStream(stream_number=number)
            self.order.append(number)
        return self.streams[number]

    def parse_file_properties(self, data: memoryview, pos: int, end: int) -> None:
        if pos + 80 > end:
            return
        play_duration, _send, preroll = struct.unpack_from("<QQQ", data, pos + 40)
        self.max_bitrate = struct.unpack_from("<I", data, pos + 76)[0]
        if play_duration:
            # play duration is in 100ns units and includes the preroll (ms)
            ms = play_duration // 10_000 - preroll
            if ms > 0:
                self.song_length_ms = ms

    def parse_stream_properties(self, data: memoryview, pos: int, end: int) -> None:
        if pos + 54 > end:
            return
        stream_type = _guid(data[pos : pos + 16])
        flags = struct.unpack_from("<H", data, pos + 48)[0]
        stream = self.stream(flags & 0x7F)
        type_specific = pos + 54

        if stream_type == ASF_AUDIO_MEDIA:
            stream.stream_type = "ASF_Audio_Media"
            if type_specific + 16 <= end:
                codec_id, channels, samplerate, avg_bytes, _align, bits = struct.unpack_from(
                    "<HHIIHH", data, type_specific
                )
                stream.codec_id = codec_id
                stream.channels = channels
                stream.samplerate = samplerate
                stream.samplesize = bits
                if not stream.bitrate:
                    stream.bitrate = avg_bytes * 8
        elif stream_type == ASF_COMMAND_MEDIA:
            stream.stream_type = "ASF_Command_Media"

    def parse_stream_bitrates(self, data: memoryview, pos: int, end: int) -> None:
        if pos + 2 > end:
            return
        count = struct.unpack_from("<H", data, pos)[0]
        pos += 2
        for _ in range(count):
            if pos + 6 > end:
                break
            flags, avg_bitrate = struct.unpack_from("<HI", data, pos)
            self.stream(flags & 0x7F).bitrate = avg_bitrate
            pos += 6

    def parse_header_extension(self, data: memoryview, pos: int, end: int) -> None:
        # reserved GUID, reserved WORD, data size DWORD
        if pos + 22 > end:
            return
        size = struct.unpack_from("<I", data, pos + 18)[0]
        start = pos + 22
        for guid, obj_pos, obj_end in _iter_objects(data, start, min(start + size, end)):
            if guid == ASF_EXTENDED_STREAM_PROPERTIES:
                self.parse_extended_stream_properties(data, obj_pos, obj_end)

    def parse_extended_stream_properties(self, data: memoryview, pos: int, end: int) -> None:
        if pos + 64 > end:
            return
        data_bitrate = struct.unpack_from("<I", data, pos + 16)[0]
        stream_number = struct.unpack_from("<H", data, pos + 48)[0]
        name_count, ext_count = struct.unpack_from("<HH", data, pos + 60)

        stream = self.stream(stream_number & 0x7F)
        if data_bitrate and not stream.bitrate:
            stream.bitrate = data_bitrate

        cursor = pos + 64
        for _ in range(name_count):
            if cursor + 4 > end:
                return
            name_len = struct.unpack_from("<H", data, cursor + 2)[0]
            cursor += 4 + name_len
        for _ in range(ext_count):
            if cursor + 22 > end:
                return
            info_len = struct.unpack_from("<I", data, cursor + 18)[0]
            cursor += 22 + info_len

        # An optional Stream Properties Object may follow
        for guid, obj_pos, obj_end in _iter_objects(data, cursor, end):
            if guid == ASF_STREAM_PROPERTIES:
                self.parse_stream_properties(data, obj_pos, obj_end)


def strip_chunk_header(data: bytes) -> bytes:
    """Remove the MMS-over-HTTP chunk header if the server sent one."""
    if len(data) >= 2 and struct.unpack_from("<H", data)[0] == CHUNK_HEADER_TYPE:
        return data[CHUNK_HEADER_SIZE:]
    return data


def read_asf_header(data: bytes) -> _AsfHeader | None:
    """Parse the ASF header object; None if `data` does not start with one."""
    view = memoryview(data)
    if len(view) < 30 or _guid(view[:16]) != ASF_HEADER:
        return None

    header = _AsfHeader()
    header_size = struct.unpack_from("<Q", view, 16)[0]
    end = min(header_size, len(view))

    for guid, pos, obj_end in _iter_objects(view, 30, end):
        if guid == ASF_FILE_PROPERTIES:
            header.parse_file_properties(view, pos, obj_end)
        elif guid == ASF_STREAM_PROPERTIES:
            header.parse_stream_properties(view, pos, obj_end)
        elif guid == ASF_STREAM_BITRATE_PROPERTIES:
            header.parse_stream_bitrates(view, pos, obj_end)
        elif guid == ASF_HEADER_EXTENSION:
            header.parse_header_extension(view, pos, obj_end)

    return header


def parse_asf(data: bytes, meta: ResponseMeta) -> ParseOutcome:
    """
    Parse a bounded ASF header read and select the stream to play.

    Returns `Failed` (ASF_UNABLE_TO_PARSE) when the header carries no bitrate
    or no playable audio stream.
    """
    header = read_asf_header(strip_chunk_header(data))

    if header is None or not header.max_bitrate:
        logger.debug("Unable to parse WMA header")
        return Failed("Unable to parse WMA header", ScanErrorCode.ASF_UNABLE_TO_PARSE)

    info = FormatInfo(content_type="wma")
    stream_num = 1
    metadata_stream: int | None = None
    selected: AsfStream | None = None

    # Some ASF streams have no stream objects at all; stream #1 is a safe bet then
    if header.streams:
        max_kbps = meta.max_wma_rate or 9999
        bitrate = 0
        valid = 0

        for number in header.order:
            stream = header.streams[number]
            stream_kbps = stream.bitrate // 1000

            if stream.stream_type == "ASF_Command_Media":
                logger.debug(
                    "Possible ASF_Command_Media metadata stream: #%d, %d kbps", number, stream_kbps
                )
                metadata_stream = number
                continue

            if stream.codec_id not in PLAYABLE_CODECS:
                continue

            logger.debug("Available stream: #%d, %d kbps", number, stream_kbps)

            if stream.bitrate > bitrate and max_kbps >= stream_kbps:
                stream_num = number
                bitrate = stream.bitrate
                selected = stream

            valid += 1

        if not valid:
            logger.debug("WMA contains no valid audio streams")
            return Failed("WMA contains no valid audio streams", ScanErrorCode.ASF_UNABLE_TO_PARSE)

        if not bitrate:
            # Bitrate info could not be parsed, so just use the first stream
            stream_num = header.order[0]
            selected = header.streams[stream_num]
        else:
            info.avg_bitrate = bitrate

        logger.debug(
            "Will play stream #%d, bitrate: %s kbps",
            stream_num,
            bitrate // 1000 if bitrate else "unknown",
        )

    if selected is not None:
        info.samplerate = selected.samplerate
        info.channels = selected.channels
        info.samplesize = selected.samplesize

    # Only set for files, broadcasts have no duration
    if header.song_length_ms:
        info.duration_ms = header.song_length_ms

    metadata: dict[str, Any] = {
        "max_bitrate": header.max_bitrate,
        "song_length_ms": header.song_length_ms,
        "streams": [vars(header.streams[n]).copy() for n in header.order],
    }
    info.hints.update(
        stream_num=stream_num,
        metadata_stream=metadata_stream,
        metadata=metadata,
    )
    return Done(info)
