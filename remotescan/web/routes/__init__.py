"""
Web Routes Package.

This package contains FastAPI route modules:
- scan: Remote URL resolution (/api/remote/scan)
"""

from remotescan.web.routes.scan import register_scan_routes

__all__ = ["register_scan_routes"]
