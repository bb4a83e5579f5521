"""Async SQLite database manager with a bounded connection pool.

Uses aiosqlite for non-blocking database operations with WAL mode so the
concurrent per-market cursor lookups can read while one batch writer commits.
"""

import asyncio
import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import aiosqlite

from fundsync.exceptions import StorageError
from fundsync.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS exchanges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    is_active INTEGER NOT NULL DEFAULT 1,
    funding_interval_minutes INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS markets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exchange_id INTEGER NOT NULL REFERENCES exchanges(id),
    token_id INTEGER NOT NULL REFERENCES tokens(id),
    market_symbol TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    updated_at INTEGER NOT NULL,
    UNIQUE (exchange_id, market_symbol)
);

CREATE TABLE IF NOT EXISTS funding_rates (
    exchange_id INTEGER NOT NULL REFERENCES exchanges(id),
    market_id INTEGER NOT NULL REFERENCES markets(id),
    rate TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    PRIMARY KEY (market_id, timestamp_ms)
);

CREATE TABLE IF NOT EXISTS market_stats (
    market_id INTEGER NOT NULL REFERENCES markets(id),
    open_interest TEXT,
    volume_24h TEXT,
    timestamp_ms INTEGER NOT NULL,
    PRIMARY KEY (market_id, timestamp_ms)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_markets_exchange_active
    ON markets(exchange_id, is_active);

CREATE INDEX IF NOT EXISTS idx_funding_exchange_ts
    ON funding_rates(exchange_id, timestamp_ms);
"""

# Read-side view: latest funding and stats per active market. Only the base
# tables are ever written.
_CREATE_VIEWS_SQL = """
CREATE VIEW IF NOT EXISTS latest_market_snapshot AS
SELECT
    t.symbol AS token,
    e.name AS exchange,
    m.market_symbol AS market_symbol,
    (SELECT fr.rate FROM funding_rates fr
        WHERE fr.market_id = m.id ORDER BY fr.timestamp_ms DESC LIMIT 1) AS funding_rate,
    (SELECT MAX(fr.timestamp_ms) FROM funding_rates fr
        WHERE fr.market_id = m.id) AS funding_ts,
    (SELECT ms.open_interest FROM market_stats ms
        WHERE ms.market_id = m.id ORDER BY ms.timestamp_ms DESC LIMIT 1) AS open_interest,
    (SELECT ms.volume_24h FROM market_stats ms
        WHERE ms.market_id = m.id ORDER BY ms.timestamp_ms DESC LIMIT 1) AS volume_24h,
    (SELECT MAX(ms.timestamp_ms) FROM market_stats ms
        WHERE ms.market_id = m.id) AS stats_ts
FROM markets m
JOIN exchanges e ON e.id = m.exchange_id
JOIN tokens t ON t.id = m.token_id
WHERE m.is_active = 1 AND e.is_active = 1;
"""


class Database:
    """Pool of aiosqlite connections to one SQLite file.

    Connections run in autocommit mode; writes go through transaction(),
    which issues an explicit BEGIN IMMEDIATE ... COMMIT.

    Usage:
        # Context manager (recommended)
        async with Database("/path/to/db", pool_size=20) as db:
            async with db.acquire() as conn:
                await conn.execute("SELECT ...")

        # Manual lifecycle
        db = Database("/path/to/db")
        await db.connect()
        try:
            async with db.transaction() as conn:
                await conn.executemany("INSERT ...", rows)
        finally:
            await db.close()
    """

    def __init__(self, db_path: str = "data/funding.db", pool_size: int = 20) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self._db_path = db_path
        self._pool_size = pool_size
        self._connections: list[aiosqlite.Connection] = []
        self._pool: asyncio.Queue[aiosqlite.Connection] | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def pool_size(self) -> int:
        return self._pool_size

    @property
    def idle_connections(self) -> int:
        """Connections currently available in the pool."""
        return self._pool.qsize() if self._pool is not None else 0

    async def connect(self) -> None:
        """Open the pool, configure pragmas, and create the schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._pool = asyncio.Queue(maxsize=self._pool_size)
        try:
            for i in range(self._pool_size):
                conn = await aiosqlite.connect(self._db_path, isolation_level=None)
                self._connections.append(conn)
                await self._configure(conn)
                if i == 0:
                    await self._create_schema(conn)
                self._pool.put_nowait(conn)
        except sqlite3.Error as exc:
            await self.close()
            raise StorageError(f"failed to open database {self._db_path}: {exc}") from exc

        logger.info("database_connected", db_path=self._db_path, pool_size=self._pool_size)

    async def close(self) -> None:
        """Close every pooled connection."""
        if not self._connections:
            return
        for conn in self._connections:
            await conn.close()
        self._connections.clear()
        self._pool = None
        logger.info("database_closed", db_path=self._db_path)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection for reads; waits while the pool is exhausted."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        conn = await self._pool.get()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(f"database read failed: {exc}") from exc
        finally:
            self._pool.put_nowait(conn)

    @asynccontextmanager
    async def transaction(
        self, relaxed_durability: bool = False
    ) -> AsyncIterator[aiosqlite.Connection]:
        """Run the body inside one BEGIN IMMEDIATE ... COMMIT.

        Rolls back on any exception. With relaxed_durability, fsync is
        skipped (PRAGMA synchronous=OFF) for this transaction only: a crash
        can lose the uncommitted batch, which the next run re-fetches.
        """
        async with self.acquire() as conn:
            if relaxed_durability:
                await conn.execute("PRAGMA synchronous=OFF")
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StorageError(f"database transaction failed: {exc}") from exc
            finally:
                if relaxed_durability:
                    await conn.execute("PRAGMA synchronous=NORMAL")

    async def _configure(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA busy_timeout=5000")

    async def _create_schema(self, conn: aiosqlite.Connection) -> None:
        """Create tables, indexes, and views if they do not exist."""
        await conn.executescript(_CREATE_TABLES_SQL)
        await conn.executescript(_CREATE_INDEXES_SQL)
        await conn.executescript(_CREATE_VIEWS_SQL)

        cursor = await conn.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
