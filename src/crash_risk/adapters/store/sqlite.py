"""
SQLite History Store Implementation.

Features:
- WAL mode for concurrent reads
- One JSON payload row per instrument
- Upsert of a whole tick in a single transaction
- Corrupt rows skipped on load (cold start for that instrument)
"""

from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any

import aiosqlite

from crash_risk.config.settings import Settings
from crash_risk.domain.errors import StoreError
from crash_risk.observability.logging import get_logger
from crash_risk.ports.store import HistoryStorePort

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS risk_history (
    instrument TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""

UPSERT_SQL = """
INSERT INTO risk_history (instrument, payload, updated_at)
VALUES (?, ?, ?)
ON CONFLICT(instrument) DO UPDATE SET
    payload = excluded.payload,
    updated_at = excluded.updated_at
"""


class SQLiteHistoryStore(HistoryStorePort):
    """SQLite-backed key-value store for engine history."""

    def __init__(self, path: str | Path, wal_mode: bool = True):
        self.db_path = Path(path)
        self.wal_mode = wal_mode
        self._conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings) -> SQLiteHistoryStore:
        return cls(settings.database.path, wal_mode=settings.database.wal_mode)

    async def initialize(self) -> None:
        if self._initialized:
            return

        logger.info(f"Initializing SQLite history store: {self.db_path}")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(str(self.db_path))
            if self.wal_mode:
                await self._conn.execute("PRAGMA journal_mode=WAL")
                await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.executescript(SCHEMA_SQL)
            await self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open history store {self.db_path}: {e}") from e

        self._initialized = True

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
        self._initialized = False
        logger.debug("SQLite history store closed")

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("History store is not initialized")
        return self._conn

    async def load_all(self) -> dict[str, dict[str, Any]]:
        conn = self._require_conn()
        try:
            async with conn.execute("SELECT instrument, payload FROM risk_history") as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read history: {e}") from e

        payloads: dict[str, dict[str, Any]] = {}
        for instrument, raw in rows:
            try:
                payload = json.loads(raw)
            except (TypeError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping corrupt history row for {instrument}: {e}")
                continue
            if not isinstance(payload, dict):
                logger.warning(f"Skipping corrupt history row for {instrument}: not an object")
                continue
            payloads[instrument] = payload
        return payloads

    async def save_many(self, payloads: dict[str, dict[str, Any]]) -> None:
        if not payloads:
            return
        conn = self._require_conn()
        now = time.time()
        rows = [(instrument, json.dumps(payload, separators=(",", ":")), now) for instrument, payload in payloads.items()]
        try:
            await conn.executemany(UPSERT_SQL, rows)
            await conn.commit()
        except sqlite3.Error as e:
            await conn.rollback()
            raise StoreError(f"Failed to save history for {len(rows)} instruments: {e}") from e
