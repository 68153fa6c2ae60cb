"""
remotescan - Entry Point

Run with: python -m remotescan scan URL
      or: python -m remotescan serve
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from remotescan import __version__
from remotescan.config import ScannerConfig, get_scanner_config, load_scanner_config
from remotescan.core import ScanError
from remotescan.core.track_db import SqliteTrackStore
from remotescan.scanner import RemoteScanner
from remotescan.web import WebServer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="remotescan",
        description="Resolve remote audio streams and playlists",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to scanner.toml (default: bundled config)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan a remote URL and print the result as JSON")
    scan.add_argument("url", help="Remote URL (http, https, mms)")
    scan.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database to store records in (default: in-memory)",
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host address to bind to (default: 127.0.0.1)",
    )
    serve.add_argument(
        "-p",
        "--port",
        type=int,
        default=9010,
        help="HTTP port (default: 9010)",
    )

    return parser.parse_args(argv)


def load_config(path: Path | None) -> ScannerConfig:
    if path is None:
        return get_scanner_config()
    return load_scanner_config(path)


async def run_scan(url: str, config: ScannerConfig, db_path: Path | None) -> int:
    """Scan one URL and print the record; returns the exit code."""
    store = None
    if db_path is not None:
        store = SqliteTrackStore(db_path)
        await store.open()
        await store.ensure_schema()

    try:
        async with RemoteScanner(config, store=store) as scanner:
            try:
                track = await scanner.resolve(url)
            except ScanError as e:
                print(json.dumps({"error": e.to_dict()}, indent=2))
                return 1
            # let bitrate scans and remaining playlist entries finish
            await scanner.wait_idle()
            print(json.dumps({"track": track.to_dict()}, indent=2))
            return 0
    finally:
        if store is not None:
            await store.close()


async def run_server(host: str, port: int, config: ScannerConfig) -> None:
    """Start and run the web server."""
    scanner = RemoteScanner(config)
    server = WebServer(scanner)
    await server.run(host=host, port=port)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)
    config = load_config(args.config)

    if args.command == "scan":
        return asyncio.run(run_scan(args.url, config, args.db))

    logger.info("Starting remotescan web server...")
    try:
        asyncio.run(run_server(host=args.host, port=args.port, config=config))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
