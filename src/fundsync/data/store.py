"""Typed SQLite read/write abstraction for exchanges, markets, funding, and stats.

Provides SyncStore with typed methods for the exchange/market catalog, the
per-market ingestion cursor, and idempotent bulk inserts of funding rates and
market stats. All SQL is isolated behind this interface.

CRITICAL: All rate/OI/volume values stored as TEXT in SQLite, restored as
Decimal on read. funding_rates and market_stats are append-only: rows are
inserted with INSERT OR IGNORE on (market_id, timestamp_ms), so the first
write for a timestamp wins and repeated runs are harmless.
"""

import time
from collections.abc import Iterator, Sequence
from decimal import Decimal
from typing import Any

from fundsync.data.database import Database
from fundsync.logging import get_logger
from fundsync.models import (
    ExchangeRecord,
    MarketRecord,
    NormalizedFundingRate,
    NormalizedMarket,
    NormalizedMarketStats,
    StoredFundingRate,
    StoredMarketStats,
)

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 20_000

# Stay under SQLite's bound-parameter limit for IN (...) lists
_IN_CLAUSE_BATCH = 500

_EXCHANGE_COLUMNS = "id, name, is_active, funding_interval_minutes"


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _exchange_from_row(row: Any) -> ExchangeRecord:
    return ExchangeRecord(
        id=row[0],
        name=row[1],
        is_active=bool(row[2]),
        funding_interval_minutes=row[3],
    )


def canonical_exchange_name(name: str) -> str:
    """Stored display form of an exchange name, e.g. "paradex" -> "Paradex"."""
    return name.strip().capitalize()


class SyncStore:
    """Async SQLite store for the funding sync pipeline.

    Wraps Database with typed read/write methods. Reads borrow a pooled
    connection; every write runs in its own transaction.

    Usage:
        async with Database("data/funding.db", pool_size=20) as database:
            store = SyncStore(database, chunk_size=20_000)
            inserted = await store.insert_funding_rates(exchange_id, rows)
    """

    def __init__(self, database: Database, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._database = database
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    # ──────────────────────────────────────────────
    # Exchange catalog
    # ──────────────────────────────────────────────

    async def lookup_exchange(self, name: str) -> ExchangeRecord | None:
        """Find an active exchange by name, case-insensitively."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                f"SELECT {_EXCHANGE_COLUMNS} FROM exchanges "
                "WHERE is_active = 1 AND name = ? COLLATE NOCASE",
                (name.strip(),),
            )
            row = await cursor.fetchone()
        return _exchange_from_row(row) if row is not None else None

    async def ensure_exchange(self, name: str) -> ExchangeRecord:
        """Return the active exchange row, inserting or reactivating it if needed."""
        existing = await self.lookup_exchange(name)
        if existing is not None:
            return existing

        now = int(time.time() * 1000)
        async with self._database.transaction() as conn:
            await conn.execute(
                "INSERT INTO exchanges (name, is_active, created_at, updated_at) "
                "VALUES (?, 1, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET is_active = 1, updated_at = excluded.updated_at",
                (canonical_exchange_name(name), now, now),
            )
            cursor = await conn.execute(
                f"SELECT {_EXCHANGE_COLUMNS} FROM exchanges WHERE name = ? COLLATE NOCASE",
                (name.strip(),),
            )
            row = await cursor.fetchone()

        record = _exchange_from_row(row)
        logger.info("exchange_ensured", exchange=record.name, exchange_id=record.id)
        return record

    async def list_active_exchanges(self) -> list[ExchangeRecord]:
        """All active exchanges ordered by name."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                f"SELECT {_EXCHANGE_COLUMNS} FROM exchanges WHERE is_active = 1 ORDER BY name"
            )
            rows = await cursor.fetchall()
        return [_exchange_from_row(row) for row in rows]

    async def deactivate_exchange(self, name: str) -> bool:
        """Mark an exchange inactive. Rows are never deleted."""
        now = int(time.time() * 1000)
        async with self._database.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE exchanges SET is_active = 0, updated_at = ? "
                "WHERE name = ? COLLATE NOCASE AND is_active = 1",
                (now, name.strip()),
            )
            changed = cursor.rowcount > 0
        if changed:
            logger.info("exchange_deactivated", exchange=name)
        return changed

    async def normalize_funding_interval(self, exchange_id: int, minutes: int) -> bool:
        """Set the exchange's funding poll interval if it differs.

        Idempotent: returns True only when a write actually happened.
        """
        now = int(time.time() * 1000)
        async with self._database.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE exchanges SET funding_interval_minutes = ?, updated_at = ? "
                "WHERE id = ? AND (funding_interval_minutes IS NULL "
                "OR funding_interval_minutes != ?)",
                (minutes, now, exchange_id, minutes),
            )
            return cursor.rowcount > 0

    # ──────────────────────────────────────────────
    # Market catalog
    # ──────────────────────────────────────────────

    async def upsert_markets(self, exchange_id: int, markets: Sequence[NormalizedMarket]) -> int:
        """Insert new markets and refresh is_active on existing ones.

        Tokens are created on first sight. Returns the number of markets written.
        """
        if not markets:
            return 0

        now = int(time.time() * 1000)
        tokens = sorted({m.symbol for m in markets})

        async with self._database.transaction() as conn:
            await conn.executemany(
                "INSERT OR IGNORE INTO tokens (symbol) VALUES (?)",
                [(symbol,) for symbol in tokens],
            )

            token_ids: dict[str, int] = {}
            for batch in _chunks(tokens, _IN_CLAUSE_BATCH):
                placeholders = ", ".join("?" for _ in batch)
                cursor = await conn.execute(
                    f"SELECT id, symbol FROM tokens WHERE symbol IN ({placeholders})",
                    list(batch),
                )
                for token_id, symbol in await cursor.fetchall():
                    token_ids[symbol] = token_id

            await conn.executemany(
                "INSERT INTO markets (exchange_id, token_id, market_symbol, is_active, updated_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(exchange_id, market_symbol) "
                "DO UPDATE SET is_active = excluded.is_active, updated_at = excluded.updated_at",
                [
                    (exchange_id, token_ids[m.symbol], m.market_symbol, int(m.is_active), now)
                    for m in markets
                ],
            )

        logger.debug("markets_upserted", exchange_id=exchange_id, count=len(markets))
        return len(markets)

    async def list_active_markets(self, exchange_id: int) -> list[MarketRecord]:
        """Active markets for an exchange, ordered by market symbol."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT m.id, m.exchange_id, m.market_symbol, t.symbol, m.is_active "
                "FROM markets m JOIN tokens t ON t.id = m.token_id "
                "WHERE m.exchange_id = ? AND m.is_active = 1 "
                "ORDER BY m.market_symbol",
                (exchange_id,),
            )
            rows = await cursor.fetchall()
        return [
            MarketRecord(
                id=row[0],
                exchange_id=row[1],
                market_symbol=row[2],
                symbol=row[3],
                is_active=bool(row[4]),
            )
            for row in rows
        ]

    async def load_market_ids(self, exchange_id: int) -> dict[str, int]:
        """Map market_symbol -> market id for every market of an exchange."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT id, market_symbol FROM markets WHERE exchange_id = ?",
                (exchange_id,),
            )
            rows = await cursor.fetchall()
        return {row[1]: row[0] for row in rows}

    # ──────────────────────────────────────────────
    # Ingestion cursors
    # ──────────────────────────────────────────────

    async def last_funding_timestamp(self, market_id: int) -> int | None:
        """Latest stored funding timestamp for a market, or None if it has none."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT MAX(timestamp_ms) FROM funding_rates WHERE market_id = ?",
                (market_id,),
            )
            row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def last_funding_timestamp_by_symbol(
        self, exchange_id: int, market_symbol: str
    ) -> int | None:
        """Like last_funding_timestamp, keyed by exchange-native symbol.

        Returns None when the market row does not exist yet.
        """
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT MAX(fr.timestamp_ms) FROM funding_rates fr "
                "JOIN markets m ON m.id = fr.market_id "
                "WHERE m.exchange_id = ? AND m.market_symbol = ?",
                (exchange_id, market_symbol),
            )
            row = await cursor.fetchone()
        return row[0] if row is not None else None

    # ──────────────────────────────────────────────
    # Idempotent bulk writes
    # ──────────────────────────────────────────────

    async def _insert_chunked(self, sql: str, data: Sequence[tuple], table: str) -> int:
        """executemany `sql` over `data`, one transaction per chunk.

        Chunks already committed stay committed if a later chunk fails.
        Returns rows actually inserted (ignored conflicts excluded).
        """
        if not data:
            return 0

        inserted = 0
        for chunk in _chunks(data, self._chunk_size):
            async with self._database.transaction(relaxed_durability=True) as conn:
                cursor = await conn.executemany(sql, chunk)
                inserted += max(cursor.rowcount, 0)

        logger.debug(f"inserted_{table}", total=len(data), inserted=inserted)
        return inserted

    async def insert_funding_rates(
        self,
        exchange_id: int,
        rows: Sequence[tuple[int, NormalizedFundingRate]],
    ) -> int:
        """Insert (market_id, funding rate) pairs, skipping existing timestamps."""
        data = [
            (exchange_id, market_id, str(rate.rate), rate.timestamp_ms)
            for market_id, rate in rows
        ]
        return await self._insert_chunked(
            "INSERT OR IGNORE INTO funding_rates "
            "(exchange_id, market_id, rate, timestamp_ms) VALUES (?, ?, ?, ?)",
            data,
            "funding_rates",
        )

    async def insert_funding_rates_by_symbol(
        self,
        exchange_id: int,
        rows: Sequence[tuple[str, NormalizedFundingRate]],
    ) -> int:
        """Insert (market_symbol, funding rate) pairs, resolving ids by join.

        Rows whose symbol has no market row are dropped.
        """
        data = [
            (exchange_id, str(rate.rate), rate.timestamp_ms, exchange_id, market_symbol)
            for market_symbol, rate in rows
        ]
        return await self._insert_chunked(
            "INSERT OR IGNORE INTO funding_rates (exchange_id, market_id, rate, timestamp_ms) "
            "SELECT ?, m.id, ?, ? FROM markets m "
            "WHERE m.exchange_id = ? AND m.market_symbol = ?",
            data,
            "funding_rates",
        )

    async def insert_market_stats(
        self,
        rows: Sequence[tuple[int, NormalizedMarketStats]],
    ) -> int:
        """Insert (market_id, stats) pairs, skipping existing timestamps."""
        data = [
            (market_id, _text(stat.open_interest), _text(stat.volume_24h), stat.timestamp_ms)
            for market_id, stat in rows
        ]
        return await self._insert_chunked(
            "INSERT OR IGNORE INTO market_stats "
            "(market_id, open_interest, volume_24h, timestamp_ms) VALUES (?, ?, ?, ?)",
            data,
            "market_stats",
        )

    async def insert_market_stats_by_symbol(
        self,
        exchange_id: int,
        rows: Sequence[tuple[str, NormalizedMarketStats]],
    ) -> int:
        """Insert (market_symbol, stats) pairs, resolving ids by join."""
        data = [
            (
                _text(stat.open_interest),
                _text(stat.volume_24h),
                stat.timestamp_ms,
                exchange_id,
                market_symbol,
            )
            for market_symbol, stat in rows
        ]
        return await self._insert_chunked(
            "INSERT OR IGNORE INTO market_stats (market_id, open_interest, volume_24h, timestamp_ms) "
            "SELECT m.id, ?, ?, ? FROM markets m "
            "WHERE m.exchange_id = ? AND m.market_symbol = ?",
            data,
            "market_stats",
        )

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_funding_rates(
        self,
        market_id: int,
        since_ms: int | None = None,
        until_ms: int | None = None,
    ) -> list[StoredFundingRate]:
        """Query funding rates for a market within an optional time range.

        Returns list of StoredFundingRate ordered by timestamp_ms ASC.
        """
        conditions = ["market_id = ?"]
        params: list = [market_id]

        if since_ms is not None:
            conditions.append("timestamp_ms >= ?")
            params.append(since_ms)
        if until_ms is not None:
            conditions.append("timestamp_ms <= ?")
            params.append(until_ms)

        where = " AND ".join(conditions)
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                f"SELECT market_id, rate, timestamp_ms FROM funding_rates "
                f"WHERE {where} ORDER BY timestamp_ms ASC",
                params,
            )
            rows = await cursor.fetchall()
        return [
            StoredFundingRate(market_id=row[0], rate=Decimal(row[1]), timestamp_ms=row[2])
            for row in rows
        ]

    async def get_market_stats(self, market_id: int) -> list[StoredMarketStats]:
        """All stats snapshots for a market, oldest first."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT market_id, open_interest, volume_24h, timestamp_ms FROM market_stats "
                "WHERE market_id = ? ORDER BY timestamp_ms ASC",
                (market_id,),
            )
            rows = await cursor.fetchall()
        return [
            StoredMarketStats(
                market_id=row[0],
                open_interest=_decimal(row[1]),
                volume_24h=_decimal(row[2]),
                timestamp_ms=row[3],
            )
            for row in rows
        ]

    async def dump_funding_rates(self) -> list[tuple[int, str, int]]:
        """Every stored (market_id, rate text, timestamp_ms), in key order."""
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT market_id, rate, timestamp_ms FROM funding_rates "
                "ORDER BY market_id, timestamp_ms"
            )
            rows = await cursor.fetchall()
        return [tuple(row) for row in rows]

    async def count_funding_rates(self, market_id: int | None = None) -> int:
        query = "SELECT COUNT(*) FROM funding_rates"
        params: tuple = ()
        if market_id is not None:
            query += " WHERE market_id = ?"
            params = (market_id,)
        async with self._database.acquire() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
        return row[0]

    async def count_market_stats(self) -> int:
        async with self._database.acquire() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM market_stats")
            row = await cursor.fetchone()
        return row[0]

    async def get_latest_snapshot(self) -> list[dict]:
        """Rows of the latest_market_snapshot view for the read side.

        Returns dicts with token, exchange, market_symbol, funding_rate,
        funding_ts, open_interest, volume_24h, stats_ts.
        """
        async with self._database.acquire() as conn:
            cursor = await conn.execute(
                "SELECT token, exchange, market_symbol, funding_rate, funding_ts, "
                "open_interest, volume_24h, stats_ts FROM latest_market_snapshot "
                "ORDER BY token, exchange, market_symbol"
            )
            rows = await cursor.fetchall()
        return [
            {
                "token": row[0],
                "exchange": row[1],
                "market_symbol": row[2],
                "funding_rate": _decimal(row[3]),
                "funding_ts": row[4],
                "open_interest": _decimal(row[5]),
                "volume_24h": _decimal(row[6]),
                "stats_ts": row[7],
            }
            for row in rows
        ]
