"""
remotescan Web Layer.

Components:
- WebServer: FastAPI application exposing the scanner over HTTP
"""

from remotescan.web.server import WebServer

__all__ = ["WebServer"]
