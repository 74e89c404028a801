"""SQLiteStorage — aiosqlite-based async key/value storage area.

Uses aiosqlite EXCLUSIVELY. The stdlib sqlite3 synchronous module is
PROHIBITED in xray/storage/.

Features:
  - WAL mode: PRAGMA journal_mode=WAL (concurrent readers in other processes)
  - Schema version guard: PRAGMA user_version=1, RuntimeError on mismatch, refuse startup
  - Long-lived connection: opened in initialize(), closed in close()
  - Upserts: INSERT ... ON CONFLICT(key) DO UPDATE, last writer wins
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from xray.constants import DEFAULT_STORAGE_PATH
from xray.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS storage_items (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_SCHEMA_VERSION = 1


# ─── SQLiteStorage ────────────────────────────────────────────────────────────


class SQLiteStorage:
    """Async SQLite storage area using aiosqlite exclusively.

    Architecture:
      - Single long-lived connection (open once in initialize(), close in close())
      - WAL mode: other processes sharing the file can read while we write
      - Schema version guard: RuntimeError on PRAGMA user_version != 0 or 1

    Default path: ~/.xray/storage.db
    Override via: XRAY_STORAGE_PATH environment variable (see factory.py)
    Or pass db_path explicitly (used in tests).

    Usage:
        storage = SQLiteStorage("/tmp/xray.db")
        await storage.initialize()
        await storage.set_item("analytics-xray-domain", payload)
        raw = await storage.get_item("analytics-xray-domain")
        await storage.close()
    """

    def __init__(self, db_path: str = DEFAULT_STORAGE_PATH) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def path(self) -> Optional[str]:
        return self._db_path

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the SQLite connection, enable WAL mode, and create/verify schema.

        Steps:
          1. Create parent directory if absent
          2. Open aiosqlite connection (long-lived)
          3. Enable WAL: PRAGMA journal_mode=WAL
          4. Read PRAGMA user_version
             - 0: fresh DB → create schema, set user_version=1
             - 1: compatible schema → no-op (idempotent)
             - other: raises RuntimeError

        Raises:
            RuntimeError: If PRAGMA user_version is neither 0 nor 1.
                          The FastAPI lifespan lets this propagate and refuses startup.
        """
        if self._db is not None:
            return

        parent_dir = os.path.dirname(self._db_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._db.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._db.executescript(_CREATE_SCHEMA_SQL)
            # executescript may not honour PRAGMA in all SQLite builds;
            # set user_version separately after the script.
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._db.commit()
            logger.info(
                "storage_schema_created",
                db_path=self._db_path,
                schema_version=_SCHEMA_VERSION,
            )
        elif current_version == _SCHEMA_VERSION:
            logger.info(
                "storage_schema_ok",
                db_path=self._db_path,
                schema_version=current_version,
            )
        else:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported storage schema version: {current_version}. "
                f"Delete {self._db_path} to reset the panel storage."
            )

    async def close(self) -> None:
        """Close the aiosqlite connection gracefully."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("storage_db_closed", db_path=self._db_path)

    # ── StorageBackend Protocol Methods ───────────────────────────────────────

    async def get_item(self, key: str) -> Optional[str]:
        """Read the value stored under ``key``.

        Returns None when the key is absent or the read fails (logged).
        """
        try:
            assert self._db is not None, "Database not initialized, call initialize() first"
            cursor = await self._db.execute(
                "SELECT value FROM storage_items WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except Exception as exc:
            logger.error(
                "storage_read_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return row["value"] if row else None

    async def set_item(self, key: str, value: str) -> None:
        """Upsert ``value`` under ``key``. Logs and re-raises on failure."""
        try:
            assert self._db is not None, "Database not initialized, call initialize() first"
            await self._db.execute(
                """INSERT INTO storage_items (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            await self._db.commit()
        except Exception as exc:
            logger.error(
                "storage_write_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

    async def remove_item(self, key: str) -> None:
        """Delete ``key``. Logs and re-raises on failure."""
        try:
            assert self._db is not None, "Database not initialized, call initialize() first"
            await self._db.execute("DELETE FROM storage_items WHERE key = ?", (key,))
            await self._db.commit()
        except Exception as exc:
            logger.error(
                "storage_remove_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

    async def health_check(self) -> bool:
        """Returns True if the DB connection is alive and queryable."""
        try:
            assert self._db is not None
            await self._db.execute("SELECT 1")
            return True
        except Exception:
            return False
