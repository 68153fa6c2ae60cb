"""
Format registry for remote scanning.

This module is the single source of truth for the content-type vocabulary used
by the remote scanner:
- MIME type -> canonical format tag (e.g. "audio/mpeg" -> "mp3")
- file extension -> canonical format tag (e.g. "flac" -> "flc")
- which tags are audio and which are playlists

Tags are short lowercase strings, the same ones stored in
`TrackRecord.content_type`. Unknown MIME types are passed through untouched so
that callers can still apply heuristics to them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, AbstractSet, Mapping
from urllib.parse import urlsplit

if TYPE_CHECKING:
    from remotescan.core.records import TrackRecord


@dataclass(frozen=True, slots=True)
class FormatTables:
    """
    Static lookup tables.

    Notes:
    - `AUDIO_TYPES` are formats a player can decode (possibly after transcoding).
    - `PLAYLIST_TYPES` are formats whose body lists further URLs.
    - `htm`/`txt` are neither: the classifier rewrites them before routing.
    """

    MIME_TYPES: Mapping[str, str]
    EXTENSIONS: Mapping[str, str]
    AUDIO_TYPES: AbstractSet[str]
    PLAYLIST_TYPES: AbstractSet[str]


DEFAULT_TABLES = FormatTables(
    MIME_TYPES={
        # MPEG audio
        "audio/mpeg": "mp3",
        "audio/mp3": "mp3",
        "audio/mpg": "mp3",
        "audio/x-mpeg": "mp3",
        "audio/x-mp3": "mp3",
        "audio/mpeg3": "mp3",
        "audio/x-mpeg3": "mp3",
        "audio/mp2": "mp2",
        # AAC / MP4
        "audio/aac": "aac",
        "audio/aacp": "aac",
        "audio/x-aac": "aac",
        "audio/mp4": "mp4",
        "audio/m4a": "mp4",
        "audio/x-m4a": "mp4",
        "video/mp4": "mp4",
        # Ogg family
        "application/ogg": "ogg",
        "audio/ogg": "ogg",
        "audio/x-ogg": "ogg",
        "audio/opus": "ops",
        # Lossless
        "audio/flac": "flc",
        "audio/x-flac": "flc",
        "audio/wav": "wav",
        "audio/x-wav": "wav",
        "audio/wave": "wav",
        "audio/aiff": "aif",
        "audio/x-aiff": "aif",
        # Windows Media
        "audio/x-ms-wma": "wma",
        "application/vnd.ms.wms-hdr.asfv1": "wma",
        "application/x-mms-framed": "wma",
        "video/x-ms-asf": "asx",
        "audio/x-ms-wax": "asx",
        "video/x-ms-wvx": "asx",
        # Playlists
        "audio/x-mpegurl": "m3u",
        "audio/mpegurl": "m3u",
        "audio/m3u": "m3u",
        "audio/x-scpls": "pls",
        "audio/scpls": "pls",
        "application/pls+xml": "pls",
        "application/vnd.ms-wpl": "wpl",
        "application/xspf+xml": "xspf",
        "text/x-opml": "opml",
        "application/json": "json",
        # Text (re-classified by the scanner)
        "text/html": "htm",
        "application/xhtml+xml": "htm",
        "text/plain": "txt",
    },
    EXTENSIONS={
        "mp3": "mp3",
        "mp2": "mp2",
        "aac": "aac",
        "m4a": "mp4",
        "m4b": "mp4",
        "mp4": "mp4",
        "ogg": "ogg",
        "oga": "ogg",
        "opus": "ops",
        "flac": "flc",
        "flc": "flc",
        "wav": "wav",
        "aif": "aif",
        "aiff": "aif",
        "wma": "wma",
        "asf": "wma",
        "asx": "asx",
        "wax": "asx",
        "m3u": "m3u",
        "m3u8": "m3u",
        "pls": "pls",
        "wpl": "wpl",
        "xspf": "xspf",
        "opml": "opml",
    },
    AUDIO_TYPES=frozenset(
        {
            "mp3",
            "mp2",
            "aac",
            "mp4",
            "alc",
            "sls",
            "ogg",
            "ogf",
            "ops",
            "flc",
            "wav",
            "aif",
            "wma",
        }
    ),
    PLAYLIST_TYPES=frozenset({"m3u", "pls", "asx", "wpl", "xspf", "opml", "json"}),
)


def normalize_format(format_hint: str | None) -> str:
    """Normalize a file/format hint to a lowercase extension without dot."""
    if not format_hint:
        return ""
    return str(format_hint).strip().lower().lstrip(".")


def mime_to_type(mime: str | None, *, tables: FormatTables = DEFAULT_TABLES) -> str | None:
    """
    Map a MIME type to its canonical format tag.

    Parameters such as `; charset=...` are ignored. Returns None for unknown types.
    """
    if not mime:
        return None
    base = mime.split(";", 1)[0].strip().lower()
    return tables.MIME_TYPES.get(base)


def valid_type_extensions(*, tables: FormatTables = DEFAULT_TABLES) -> list[str]:
    """Return all known file extensions, longest first (safe for regex alternation)."""
    return sorted(tables.EXTENSIONS, key=lambda ext: (-len(ext), ext))


def type_for_extension(ext: str | None, *, tables: FormatTables = DEFAULT_TABLES) -> str | None:
    """Map a bare extension (no dot) to its format tag."""
    return tables.EXTENSIONS.get(normalize_format(ext))


def type_from_path(url: str, *, tables: FormatTables = DEFAULT_TABLES) -> str:
    """
    Guess a format tag from a URL's path extension.

    Returns "unk" when the extension is missing or unknown.
    """
    path = urlsplit(url).path
    match = re.search(r"\.([A-Za-z0-9]+)$", path)
    if match is None:
        return "unk"
    return type_for_extension(match.group(1), tables=tables) or "unk"


def is_audio_type(format_hint: str | None, *, tables: FormatTables = DEFAULT_TABLES) -> bool:
    """Return True if this format tag names decodable audio."""
    return normalize_format(format_hint) in tables.AUDIO_TYPES


def is_playlist_type(format_hint: str | None, *, tables: FormatTables = DEFAULT_TABLES) -> bool:
    """Return True if this format tag names a playlist."""
    return normalize_format(format_hint) in tables.PLAYLIST_TYPES


def is_song(
    track: TrackRecord | None,
    format_hint: str | None = None,
    *,
    tables: FormatTables = DEFAULT_TABLES,
) -> str | None:
    """
    Decide whether a record (or an explicit format tag) is an audio stream.

    Returns the audio format tag, or None when the record should be treated as a
    playlist. A record already converted to a playlist is never a song.
    """
    if track is not None and track.is_playlist:
        return None
    fmt = normalize_format(format_hint or (track.content_type if track is not None else None))
    if fmt in tables.AUDIO_TYPES:
        return fmt
    return None
