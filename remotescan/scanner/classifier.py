"""
Content-type classification for remote responses.

Streaming servers routinely mislabel what they send: playlists served as
text/html, AAC served as audio/mpeg, everything served as
application/octet-stream. `classify_content_type` reconciles the declared MIME
type with the URL. Corrections only ever fire for MIME types that are known to
be unreliable; an unambiguous type is never overridden by the URL.

`icy_bitrate` reads the bitrate hints Shoutcast/Icecast servers put in their
response headers.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from remotescan.core.formats import mime_to_type, type_for_extension, valid_type_extensions

logger = logging.getLogger(__name__)

# Icecast "ice-quality" values are Ogg Vorbis quality levels, not bitrates.
OGG_QUALITY: dict[int, int] = {
    0: 64_000,
    1: 80_000,
    2: 96_000,
    3: 112_000,
    4: 128_000,
    5: 160_000,
    6: 192_000,
    7: 224_000,
    8: 256_000,
    9: 320_000,
    10: 500_000,
}

_ICE_AUDIO_INFO = re.compile(r"ice-(?:bitrate|quality)=([0-9.]+)", re.IGNORECASE)


def _header_values(headers: Mapping[str, Any] | None, name: str) -> list[str]:
    """All values of a header (httpx.Headers are multi-valued, plain dicts are not)."""
    if not headers:
        return []
    get_list = getattr(headers, "get_list", None)
    if get_list is not None:
        return [v for v in get_list(name) if v]
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [str(v) for v in value if v]
    return [str(value)]


def first_content_type(headers: Mapping[str, Any] | None) -> str | None:
    """First Content-Type value, parameters stripped, lowercased."""
    values = _header_values(headers, "content-type")
    if not values:
        return None
    base = values[0].split(",", 1)[0].split(";", 1)[0].strip().lower()
    return base or None


def _url_path(url: str) -> str:
    # Query strings would defeat the `$`-anchored extension checks.
    return url.split("?", 1)[0].split("#", 1)[0]


def classify_content_type(
    content_type: str | None,
    url: str,
    *,
    icy_name: bool = False,
) -> str | None:
    """
    Map a declared content type plus the URL to one canonical format tag.

    Args:
        content_type: Declared MIME type (already reduced to its first value).
        url: The (final) URL of the response.
        icy_name: True if the response carried an `icy-name` header.

    Returns:
        A format tag, the declared type itself when it is unknown, or None when
        nothing at all could be determined.
    """
    tag = mime_to_type(content_type) or (content_type.lower() if content_type else None)
    path = _url_path(url)

    if tag in ("mp3", "txt") and re.search(r"aac$", path, re.IGNORECASE):
        tag = "aac"
    elif tag in ("mp3", "txt") and re.search(r"(?:m4a|mp4)$", path, re.IGNORECASE):
        tag = "mp4"
    elif tag and re.search(r"htm|txt", tag) and (
        m := re.search(r"\.(asx|m3u|pls|wpl|wma)$", path, re.IGNORECASE)
    ):
        tag = m.group(1).lower()
    elif tag == "wma" and re.search(r"\.m3u$", path, re.IGNORECASE):
        # Some servers send audio/x-ms-wma for their m3u playlists
        tag = "m3u"
    elif tag and re.search(r"htm|txt", tag):
        tag = "m3u"
    elif tag and "octet-stream" in tag:
        extensions = "|".join(re.escape(ext) for ext in valid_type_extensions())
        if m := re.search(rf"\.({extensions})\b", url, re.IGNORECASE):
            tag = type_for_extension(m.group(1)) or tag

    # Some Shoutcast/Icecast servers don't send a content-type
    if not tag and icy_name:
        tag = "mp3"

    logger.debug("Content-type for %s detected as %s (%s)", url, tag, content_type)
    return tag


def classify_response(headers: Mapping[str, Any] | None, url: str) -> str | None:
    """Classify a response from its headers and final URL."""
    return classify_content_type(
        first_content_type(headers),
        url,
        icy_name=bool(_header_values(headers, "icy-name")),
    )


def icy_bitrate(headers: Mapping[str, Any] | None) -> tuple[int | None, bool]:
    """
    Find a bitrate in Shoutcast/Icecast response headers.

    Returns:
        `(bitrate_bps, vbr)`; bitrate is None when the headers carry no hint.
    """
    bitrate: float | None = None
    vbr = False

    info = _header_values(headers, "ice-audio-info")
    if info and (m := _ICE_AUDIO_INFO.search(info[0])):
        value = float(m.group(1))
        if value <= 10:
            # Ogg quality level
            bitrate = OGG_QUALITY[int(value)]
            vbr = True
        else:
            bitrate = value

    if not bitrate:
        for name in ("icy-br", "x-audiocast-bitrate"):
            values = _header_values(headers, name)
            if not values:
                continue
            try:
                bitrate = float(values[0].split(",", 1)[0]) * 1000
            except ValueError:
                logger.debug("Ignoring malformed %s header: %r", name, values[0])
                continue
            break

    if not bitrate:
        return None, False

    # kbps sneaking through
    if bitrate < 1000:
        bitrate *= 1000

    return int(bitrate), vbr
