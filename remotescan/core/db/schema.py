"""
Database schema + migrations for the remote track store.

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- Keep migrations small and explicit; for huge refactors prefer a new DB.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 2


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    This function assumes:
    - `conn` is an open aiosqlite connection
    - foreign_keys pragma is enabled by the caller
    """
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """Perform forward-only migrations."""
    # v0 -> v1: remote tracks
    if from_version < 1 <= to_version:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS remote_tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL UNIQUE,
                title TEXT,
                cover TEXT,
                content_type TEXT,
                bitrate INTEGER,
                vbr INTEGER NOT NULL DEFAULT 0,
                duration REAL,
                samplerate INTEGER,
                samplesize INTEGER,
                channels INTEGER,
                audio_offset INTEGER,
                audio_size INTEGER,
                block_alignment INTEGER,
                endian INTEGER,
                filesize INTEGER,
                redir TEXT,
                error TEXT,
                drm INTEGER NOT NULL DEFAULT 0,
                initial_block_fn TEXT,
                initial_block_type INTEGER,
                is_playlist INTEGER NOT NULL DEFAULT 0
            )
            """
        )

    # v1 -> v2: playlist membership
    if from_version < 2 <= to_version:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS playlist_entries (
                playlist_id INTEGER NOT NULL REFERENCES remote_tracks(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                track_id INTEGER NOT NULL REFERENCES remote_tracks(id) ON DELETE CASCADE,
                PRIMARY KEY (playlist_id, position)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_playlist_entries_track ON playlist_entries(track_id);"
        )
