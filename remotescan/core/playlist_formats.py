"""
Playlist body readers.

Each reader turns the raw body of a remote playlist into an ordered list of
entries. Entries that cannot be turned into a remote URL are kept as `None`
placeholders so that callers can account for them (the scanner counts them out
of its expected total).

Supported formats:
- m3u / m3u8 (with #EXTINF titles)
- pls (File<n>= / Title<n>=)
- asx (Windows Media metafile, usually not well-formed XML)
- wpl, xspf (XML)
- json / opml feeds: items are flattened into synthetic entries
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlsplit

logger = logging.getLogger(__name__)

REMOTE_SCHEMES: frozenset[str] = frozenset({"http", "https", "mms", "mmsh"})


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    """One item parsed out of a playlist body."""

    url: str
    title: str | None = None
    cover: str | None = None


ReaderResult = list[PlaylistEntry | None]
Reader = Callable[[str, str], ReaderResult]


class PlaylistParseError(ValueError):
    """Raised when a playlist body cannot be parsed at all."""


def _decode(body: bytes) -> str:
    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError:
        return body.decode("latin-1")


def _clean(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    s = str(value).strip()
    return s if s else None


def _entry(raw_url: str | None, base_url: str, **attrs: Any) -> PlaylistEntry | None:
    """Resolve `raw_url` against the playlist URL; None if it is not a remote URL."""
    raw = _clean(raw_url)
    if not raw:
        return None
    try:
        url = urljoin(base_url, raw)
        parts = urlsplit(url)
    except ValueError:
        logger.debug("Skipping malformed playlist entry %r", raw)
        return None
    if parts.scheme.lower() not in REMOTE_SCHEMES or not parts.netloc:
        logger.debug("Skipping non-remote playlist entry %r", raw)
        return None
    return PlaylistEntry(
        url=url,
        title=_clean(attrs.get("title")),
        cover=_clean(attrs.get("cover")),
    )


# =============================================================================
# Text formats
# =============================================================================


def read_m3u(text: str, base_url: str) -> ReaderResult:
    """Read an M3U body: one URL per line, optional `#EXTINF:<secs>,<title>` before it."""
    results: ReaderResult = []
    pending_title: str | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#EXTINF"):
            parts = line.split(",", 1)
            pending_title = parts[1].strip() if len(parts) == 2 else None
            continue
        if line.startswith("#"):
            continue

        results.append(_entry(line, base_url, title=pending_title))
        pending_title = None

    return results


_PLS_LINE = re.compile(r"^\s*(File|Title)(\d+)\s*=\s*(.*)$", re.IGNORECASE)


def read_pls(text: str, base_url: str) -> ReaderResult:
    """Read a PLS body. Entries are ordered by their index, not by line order."""
    files: dict[int, str] = {}
    titles: dict[int, str] = {}

    for line in text.splitlines():
        match = _PLS_LINE.match(line)
        if match is None:
            continue
        key, index, value = match.group(1).lower(), int(match.group(2)), match.group(3)
        if key == "file":
            files[index] = value
        else:
            titles[index] = value

    return [_entry(files[i], base_url, title=titles.get(i)) for i in sorted(files)]


_ASX_ENTRY = re.compile(r"<entry\b[^>]*>(.*?)</entry>", re.IGNORECASE | re.DOTALL)
_ASX_REF = re.compile(r"<(?:ref|entryref)\b[^>]*?href\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_ASX_TITLE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def read_asx(text: str, base_url: str) -> ReaderResult:
    """
    Read an ASX metafile.

    ASX files in the wild are rarely valid XML (unquoted attributes, mixed case,
    stray ampersands), so we pattern-match instead of using an XML parser. Only the
    first `<ref>` of each `<entry>` is used; the others are fallbacks for the same
    stream.
    """
    results: ReaderResult = []
    blocks = _ASX_ENTRY.findall(text)

    if not blocks:
        return [_entry(href, base_url) for href in _ASX_REF.findall(text)]

    for block in blocks:
        ref = _ASX_REF.search(block)
        title = _ASX_TITLE.search(block)
        results.append(
            _entry(ref.group(1) if ref else None, base_url, title=title.group(1) if title else None)
        )
    return results


# =============================================================================
# XML formats
# =============================================================================


def _parse_xml(text: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise PlaylistParseError(f"invalid XML: {e}") from e


def read_wpl(text: str, base_url: str) -> ReaderResult:
    """Read a Windows Media Player playlist (`<media src="...">`)."""
    root = _parse_xml(text)
    return [_entry(media.get("src"), base_url) for media in root.iter("media")]


def read_xspf(text: str, base_url: str) -> ReaderResult:
    """Read an XSPF playlist (namespace-agnostic)."""
    root = _parse_xml(text)
    results: ReaderResult = []
    for track in root.iter("{*}track"):
        results.append(
            _entry(
                track.findtext("{*}location"),
                base_url,
                title=track.findtext("{*}title"),
                cover=track.findtext("{*}image"),
            )
        )
    return results


# =============================================================================
# Feeds (JSON / OPML)
# =============================================================================


def _flatten_items(items: Iterable[Any], base_url: str) -> ReaderResult:
    results: ReaderResult = []
    for item in items:
        if not isinstance(item, dict):
            continue
        url = item.get("play") or item.get("url") or item.get("URL")
        if url:
            results.append(
                _entry(
                    str(url),
                    base_url,
                    title=item.get("name") or item.get("text") or item.get("title"),
                    cover=item.get("image") or item.get("icon"),
                )
            )
        children = item.get("items") or item.get("children")
        if isinstance(children, list):
            results.extend(_flatten_items(children, base_url))
    return results


def read_json_feed(text: str, base_url: str) -> ReaderResult:
    """
    Flatten a JSON feed into entries.

    Accepts `{"items": [...]}`, OPML-style `{"body": [...]}` or a bare list.
    Items are keyed by `play`, `url` or `URL`.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PlaylistParseError(f"invalid JSON: {e}") from e

    if isinstance(data, dict):
        items = data.get("items") or data.get("body") or []
    elif isinstance(data, list):
        items = data
    else:
        items = []
    return _flatten_items(items, base_url)


def read_opml(text: str, base_url: str) -> ReaderResult:
    """Flatten OPML `<outline>` elements that carry a URL attribute."""
    root = _parse_xml(text)
    results: ReaderResult = []
    for outline in root.iter("outline"):
        url = outline.get("URL") or outline.get("url")
        if not url:
            continue
        results.append(
            _entry(url, base_url, title=outline.get("text"), cover=outline.get("image"))
        )
    return results


READERS: dict[str, Reader] = {
    "m3u": read_m3u,
    "pls": read_pls,
    "asx": read_asx,
    "wpl": read_wpl,
    "xspf": read_xspf,
}

FEED_READERS: dict[str, Reader] = {
    "json": read_json_feed,
    "opml": read_opml,
}


def is_feed_type(content_type: str | None) -> bool:
    return bool(content_type) and content_type in FEED_READERS


def read_playlist(content_type: str | None, body: bytes, base_url: str) -> ReaderResult:
    """
    Parse a playlist body of the given type.

    Returns an empty list for unknown types.

    Raises:
        PlaylistParseError: the body is not valid for its declared format.
    """
    if not content_type:
        return []
    reader = READERS.get(content_type) or FEED_READERS.get(content_type)
    if reader is None:
        logger.debug("No playlist reader for content-type %s", content_type)
        return []
    return reader(_decode(body), base_url)
