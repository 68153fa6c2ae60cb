"""
Ogg header sniffer.

Looks at the first packet of the first Ogg page to tell OggFLAC and OggOpus
apart from plain Ogg Vorbis. Both need a different decode path. Anything else
stays `ogg`; this parser never fails a scan.

OggFLAC mapping: https://xiph.org/flac/ogg_mapping.html
OggOpus header: https://www.rfc-editor.org/rfc/rfc7845#section-5.1
"""

from __future__ import annotations

import logging
import struct

from remotescan.scanner.parsers.base import Done, FormatInfo, ParseOutcome, ResponseMeta
from remotescan.scanner.parsers.flac import estimate_bitrate

logger = logging.getLogger(__name__)

# Page header of a first page with a single segment
PAYLOAD_OFFSET = 28


def parse_ogg(data: bytes, meta: ResponseMeta) -> ParseOutcome:
    payload = data[PAYLOAD_OFFSET:]

    if payload[:5] == b"\x7fFLAC" and payload[9:13] == b"fLaC" and len(payload) >= 31:
        samplerate = (struct.unpack_from(">I", payload, 26)[0] & 0x00FFFFF0) >> 4
        samplesize = ((struct.unpack_from(">H", payload, 29)[0] & 0x01F0) >> 4) + 1
        channels = ((payload[29] & 0x0E) >> 1) + 1
        bitrate = estimate_bitrate(samplerate, samplesize, channels)
        logger.debug(
            "Ogg stream is OggFlac: %dHz, %dBits, %dch => estimated bitrate: %dkbps",
            samplerate,
            samplesize,
            channels,
            bitrate // 1000,
        )
        return Done(
            FormatInfo(
                content_type="ogf",
                samplerate=samplerate,
                samplesize=samplesize,
                channels=channels,
                avg_bitrate=bitrate,
            )
        )

    if payload[:8] == b"OpusHead" and len(payload) >= 16:
        channels = payload[9]
        samplerate = struct.unpack_from("<I", payload, 12)[0]
        logger.debug("Ogg stream is OggOpus: input %dHz, %dch", samplerate, channels)
        return Done(
            FormatInfo(
                content_type="ops",
                samplerate=samplerate or None,
                samplesize=16,
                channels=channels or None,
            )
        )

    return Done(FormatInfo())
