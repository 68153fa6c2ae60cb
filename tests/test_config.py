"""
Tests for remotescan.config.

These tests verify:
- The bundled scanner.toml loads and matches the defaults
- Values from a custom file override defaults
- Unknown keys are ignored
"""

from __future__ import annotations

from pathlib import Path

from remotescan.config import ScannerConfig, load_scanner_config, reload_scanner_config


class TestScannerConfig:
    """Tests for loading scanner settings."""

    def test_bundled_config_matches_defaults(self) -> None:
        """The shipped file documents the defaults; it must not drift from them."""
        assert load_scanner_config() == ScannerConfig()

    def test_custom_file(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.toml"
        path.write_text(
            "[scanner]\n"
            "remote_stream_timeout = 3.5\n"
            "max_wma_rate = 128\n"
            "wma_direct_streaming = false\n",
            encoding="utf-8",
        )

        config = load_scanner_config(path)

        assert config.remote_stream_timeout == 3.5
        assert config.max_wma_rate == 128
        assert config.wma_direct_streaming is False
        assert config.playlist_stagger_seconds == ScannerConfig().playlist_stagger_seconds

    def test_unknown_keys_are_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.toml"
        path.write_text("[scanner]\nmax_redirects = 3\nflux_capacitor = true\n", encoding="utf-8")

        assert load_scanner_config(path) == ScannerConfig(max_redirects=3)

    def test_missing_section(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.toml"
        path.write_text("[other]\nkey = 1\n", encoding="utf-8")

        assert load_scanner_config(path) == ScannerConfig()

    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.toml"
        path.write_text("[scanner]\nplaylist_read_limit = 1024\n", encoding="utf-8")

        try:
            assert reload_scanner_config(path).playlist_read_limit == 1024
        finally:
            reload_scanner_config()
