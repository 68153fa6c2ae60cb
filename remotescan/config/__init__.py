"""
Configuration management for remotescan.

This module loads scanner settings (timeouts, WMA stream cap, playlist
staggering) from a TOML file. The scanner receives a `ScannerConfig` at
construction time; only the CLI and web entry points use the global accessor.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent


@dataclass
class ScannerConfig:
    """
    Remote scanner settings.

    Attributes:
        remote_stream_timeout: Seconds to wait for connect/headers/body chunks.
        max_wma_rate: Highest ASF stream bitrate (kbps) we are willing to select.
        wma_direct_streaming: When False, mms:// URLs are not scanned at all.
        max_redirects: Redirect hops followed before giving up.
        playlist_stagger_seconds: Delay unit between sibling playlist entry scans.
        auth_delay_seconds: Delay before reporting success for basic-auth streams.
        playlist_read_limit: Bytes read from a playlist body.
        image_cache_ttl_seconds: Lifetime of icon entries copied across redirects.
        user_agent: User-Agent for plain HTTP requests.
    """

    remote_stream_timeout: float = 10.0
    max_wma_rate: int = 9999
    wma_direct_streaming: bool = True
    max_redirects: int = 10
    playlist_stagger_seconds: float = 1.0
    auth_delay_seconds: float = 1.0
    playlist_read_limit: int = 128 * 1024
    image_cache_ttl_seconds: int = 30 * 24 * 3600
    user_agent: str = "remotescan/0.1.0"


def _parse_scanner_section(data: dict[str, Any]) -> ScannerConfig:
    """Build a ScannerConfig from the `[scanner]` table, ignoring unknown keys."""
    known = {f.name: f for f in fields(ScannerConfig)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown scanner config key: %s", key)
            continue
        values[key] = value
    return ScannerConfig(**values)


def load_scanner_config(config_path: Path | None = None) -> ScannerConfig:
    """
    Load scanner configuration from a TOML file.

    Args:
        config_path: Path to scanner.toml. If None, uses default location.

    Returns:
        Loaded ScannerConfig instance.
    """
    if config_path is None:
        config_path = CONFIG_DIR / "scanner.toml"

    logger.debug("Loading scanner config from %s", config_path)

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    return _parse_scanner_section(data.get("scanner", {}))


# Global singleton instance (lazy loaded)
_scanner_config: ScannerConfig | None = None


def get_scanner_config() -> ScannerConfig:
    """
    Get the global scanner configuration (lazy loaded singleton).

    Returns:
        The ScannerConfig instance.
    """
    global _scanner_config

    if _scanner_config is None:
        _scanner_config = load_scanner_config()

    return _scanner_config


def reload_scanner_config(config_path: Path | None = None) -> ScannerConfig:
    """
    Force reload of scanner configuration.

    Returns:
        The newly loaded ScannerConfig instance.
    """
    global _scanner_config
    _scanner_config = load_scanner_config(config_path)
    return _scanner_config
