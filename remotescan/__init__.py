"""
remotescan - Remote stream format resolution.

Resolves a remote URL into either an audio stream with known decode
parameters (bitrate, duration, sample geometry, audio offset) or a
recursively-expanded playlist of such streams.
"""

__version__ = "0.1.0"

from remotescan.scanner import RemoteScanner, ScanRequest, ScanSession

__all__ = ["RemoteScanner", "ScanRequest", "ScanSession", "__version__"]
