"""
AAC (ADTS/ADIF) header parser.

Only the sample rate is of interest here. A missing rate is fine: the stream
plays regardless, so this parser never fails the scan.
"""

from __future__ import annotations

import io
import logging

from mutagen import MutagenError
from mutagen.aac import AAC

from remotescan.scanner.parsers.base import Done, FormatInfo, ParseOutcome, ResponseMeta

logger = logging.getLogger(__name__)


def parse_aac(data: bytes, meta: ResponseMeta) -> ParseOutcome:
    info = FormatInfo()
    try:
        aac = AAC(io.BytesIO(data))
    except MutagenError as e:
        logger.debug("No AAC header in %s: %s", meta.url, e)
        return Done(info)

    if aac.info.sample_rate:
        info.samplerate = int(aac.info.sample_rate)
    if aac.info.channels:
        info.channels = int(aac.info.channels)
    logger.debug("AAC samplerate for %s: %s", meta.url, info.samplerate)
    return Done(info)
