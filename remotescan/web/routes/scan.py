"""
Scan Routes for remotescan.

Provides:
- /api/remote/scan?url=...: Resolve a remote URL to a track or playlist record
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from remotescan.core import ScanError

if TYPE_CHECKING:
    from remotescan.scanner.remote import RemoteScanner

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scan"])

# Reference set during route registration
_scanner: RemoteScanner | None = None


def register_scan_routes(app, scanner: RemoteScanner) -> None:
    """
    Register scan routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        scanner: RemoteScanner used to resolve URLs
    """
    global _scanner
    _scanner = scanner
    app.include_router(router)


@router.get("/api/remote/scan", response_model=None)
async def scan_remote_url(url: str = "") -> dict[str, Any] | JSONResponse:
    """
    Resolve a remote URL.

    Returns the record as `{"track": {...}}`. Scan errors are returned with
    status 422 and a `{"code", "message"}` body.
    """
    if _scanner is None:
        raise HTTPException(status_code=503, detail="Scanner not initialized")

    try:
        track = await _scanner.resolve(url)
    except ScanError as e:
        logger.info("Scan of %s failed: %s", url, e.code.value)
        return JSONResponse(status_code=422, content=e.to_dict())

    return {"track": track.to_dict()}
