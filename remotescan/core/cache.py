"""
Small string-keyed cache with per-entry expiry.

The scanner only uses it to carry a station icon across a redirect
(`remote_image_<url>` keys), but the cache itself knows nothing about that.
"""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

# 30 days
DEFAULT_TTL_SECONDS = 30 * 24 * 3600


class Cache:
    """
    In-process key/value cache.

    Expired entries are dropped lazily on access.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS) -> None:
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at < time.monotonic():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = time.monotonic() + (self.default_ttl if ttl is None else ttl)
        self._entries[key] = (expires_at, value)

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
