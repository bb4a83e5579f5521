"""Tests for SyncStore against a real SQLite database.

Covers the exchange/market catalog, ingestion cursors, idempotent chunked
writes, and Decimal/millisecond round-trips.
"""

from decimal import Decimal

import pytest

from conftest import make_market, make_rate
from fundsync.data.database import Database
from fundsync.data.store import SyncStore, canonical_exchange_name
from fundsync.exceptions import StorageError
from fundsync.models import NormalizedMarketStats


async def _seed(store: SyncStore, *symbols: str) -> tuple[int, dict[str, int]]:
    exchange = await store.ensure_exchange("paradex")
    await store.upsert_markets(exchange.id, [make_market(s) for s in symbols])
    return exchange.id, await store.load_market_ids(exchange.id)


# ---------------------------------------------------------------------------
# Exchange catalog
# ---------------------------------------------------------------------------


class TestExchangeCatalog:
    @pytest.mark.asyncio
    async def test_ensure_creates_canonical_name(self, store: SyncStore) -> None:
        exchange = await store.ensure_exchange("paradex")
        assert exchange.name == "Paradex"
        assert exchange.is_active

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent_and_case_insensitive(self, store: SyncStore) -> None:
        first = await store.ensure_exchange("paradex")
        second = await store.ensure_exchange("PARADEX")
        assert first.id == second.id
        assert len(await store.list_active_exchanges()) == 1

    @pytest.mark.asyncio
    async def test_lookup_ignores_inactive(self, store: SyncStore) -> None:
        await store.ensure_exchange("extended")
        assert await store.deactivate_exchange("Extended")
        assert await store.lookup_exchange("extended") is None
        assert not await store.deactivate_exchange("extended")

    @pytest.mark.asyncio
    async def test_ensure_reactivates(self, store: SyncStore) -> None:
        original = await store.ensure_exchange("extended")
        await store.deactivate_exchange("extended")
        revived = await store.ensure_exchange("extended")
        assert revived.id == original.id
        assert revived.is_active

    @pytest.mark.asyncio
    async def test_normalize_funding_interval_is_idempotent(self, store: SyncStore) -> None:
        exchange = await store.ensure_exchange("paradex")
        assert await store.normalize_funding_interval(exchange.id, 480) is True
        assert await store.normalize_funding_interval(exchange.id, 480) is False
        refreshed = await store.lookup_exchange("paradex")
        assert refreshed is not None
        assert refreshed.funding_interval_minutes == 480

    def test_canonical_exchange_name(self) -> None:
        assert canonical_exchange_name(" bybit ") == "Bybit"


# ---------------------------------------------------------------------------
# Market catalog
# ---------------------------------------------------------------------------


class TestMarketCatalog:
    @pytest.mark.asyncio
    async def test_upsert_and_list(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP", "ETH-USD-PERP")
        markets = await store.list_active_markets(exchange_id)
        assert [m.market_symbol for m in markets] == ["BTC-USD-PERP", "ETH-USD-PERP"]
        assert [m.symbol for m in markets] == ["BTC", "ETH"]
        assert set(ids) == {"BTC-USD-PERP", "ETH-USD-PERP"}

    @pytest.mark.asyncio
    async def test_upsert_deactivates_without_deleting(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP", "ETH-USD-PERP")
        await store.upsert_markets(exchange_id, [make_market("ETH-USD-PERP", active=False)])

        active = await store.list_active_markets(exchange_id)
        assert [m.market_symbol for m in active] == ["BTC-USD-PERP"]
        assert await store.load_market_ids(exchange_id) == ids

    @pytest.mark.asyncio
    async def test_upsert_empty(self, store: SyncStore) -> None:
        exchange = await store.ensure_exchange("paradex")
        assert await store.upsert_markets(exchange.id, []) == 0


# ---------------------------------------------------------------------------
# Funding writes and cursors
# ---------------------------------------------------------------------------


class TestFundingWrites:
    @pytest.mark.asyncio
    async def test_cursor_empty_market(self, store: SyncStore) -> None:
        _, ids = await _seed(store, "BTC-USD-PERP")
        assert await store.last_funding_timestamp(ids["BTC-USD-PERP"]) is None

    @pytest.mark.asyncio
    async def test_insert_and_cursor(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        rows = [
            (market_id, make_rate("BTC-USD-PERP", "0.0001", 1_700_000_000_000)),
            (market_id, make_rate("BTC-USD-PERP", "-0.0002", 1_700_028_800_000)),
        ]
        assert await store.insert_funding_rates(exchange_id, rows) == 2
        assert await store.last_funding_timestamp(market_id) == 1_700_028_800_000
        assert (
            await store.last_funding_timestamp_by_symbol(exchange_id, "BTC-USD-PERP")
            == 1_700_028_800_000
        )

    @pytest.mark.asyncio
    async def test_reinsert_is_noop(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        rows = [(market_id, make_rate("BTC-USD-PERP", "0.0001", 1_700_000_000_000))]

        assert await store.insert_funding_rates(exchange_id, rows) == 1
        before = await store.dump_funding_rates()
        assert await store.insert_funding_rates(exchange_id, rows) == 0
        assert await store.dump_funding_rates() == before

    @pytest.mark.asyncio
    async def test_first_write_wins(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        await store.insert_funding_rates(
            exchange_id, [(market_id, make_rate("BTC-USD-PERP", "0.0001", 1000))]
        )
        await store.insert_funding_rates(
            exchange_id, [(market_id, make_rate("BTC-USD-PERP", "0.9999", 1000))]
        )
        stored = await store.get_funding_rates(market_id)
        assert [r.rate for r in stored] == [Decimal("0.0001")]

    @pytest.mark.asyncio
    async def test_duplicates_within_batch_inserted_once(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        row = (market_id, make_rate("BTC-USD-PERP", "0.0001", 1000))
        assert await store.insert_funding_rates(exchange_id, [row, row, row]) == 1

    @pytest.mark.asyncio
    async def test_decimal_and_ms_round_trip(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        rate = make_rate("BTC-USD-PERP", "0.000012345678901234", 1_700_000_000_123)
        await store.insert_funding_rates(exchange_id, [(market_id, rate)])

        stored = await store.get_funding_rates(market_id)
        assert stored[0].rate == Decimal("0.000012345678901234")
        assert stored[0].timestamp_ms == 1_700_000_000_123

    @pytest.mark.asyncio
    async def test_range_query(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        await store.insert_funding_rates(
            exchange_id,
            [(market_id, make_rate("BTC-USD-PERP", "0.1", ts)) for ts in (100, 200, 300)],
        )
        stored = await store.get_funding_rates(market_id, since_ms=150, until_ms=300)
        assert [r.timestamp_ms for r in stored] == [200, 300]

    @pytest.mark.asyncio
    async def test_by_symbol_resolves_ids_and_drops_unknown(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        rows = [
            ("BTC-USD-PERP", make_rate("BTC-USD-PERP", "0.1", 100)),
            ("NOPE-USD-PERP", make_rate("NOPE-USD-PERP", "0.1", 100)),
        ]
        assert await store.insert_funding_rates_by_symbol(exchange_id, rows) == 1
        assert await store.count_funding_rates(ids["BTC-USD-PERP"]) == 1
        assert await store.count_funding_rates() == 1


class TestChunking:
    @pytest.mark.asyncio
    async def test_multi_chunk_write(self, database: Database) -> None:
        store = SyncStore(database, chunk_size=7)
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        rows = [(market_id, make_rate("BTC-USD-PERP", "0.0001", ts)) for ts in range(1, 51)]

        assert await store.insert_funding_rates(exchange_id, rows) == 50
        assert await store.count_funding_rates() == 50
        assert await store.insert_funding_rates(exchange_id, rows) == 0

    @pytest.mark.asyncio
    async def test_chunk_size_does_not_change_outcome(self, tmp_path) -> None:
        dumps = []
        for chunk_size in (1, 3, 1000):
            async with Database(str(tmp_path / f"c{chunk_size}.db"), pool_size=2) as db:
                store = SyncStore(db, chunk_size=chunk_size)
                exchange_id, ids = await _seed(store, "BTC-USD-PERP", "ETH-USD-PERP")
                rows = [
                    (ids[sym], make_rate(sym, f"0.000{ts}", ts))
                    for sym in ("BTC-USD-PERP", "ETH-USD-PERP")
                    for ts in range(1, 10)
                ]
                await store.insert_funding_rates(exchange_id, rows)
                dumps.append(await store.dump_funding_rates())
        assert dumps[0] == dumps[1] == dumps[2]

    @pytest.mark.asyncio
    async def test_failed_chunk_keeps_earlier_chunks(self, database: Database) -> None:
        """Chunk 3 violates the market foreign key: chunks 1 and 2 stay, chunks 3 and 4 never land."""
        store = SyncStore(database, chunk_size=5)
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        rows = [(market_id, make_rate("BTC-USD-PERP", "0.0001", ts)) for ts in range(1, 21)]
        rows[12] = (market_id + 999, make_rate("BTC-USD-PERP", "0.0001", 13))

        with pytest.raises(StorageError):
            await store.insert_funding_rates(exchange_id, rows)

        stored = await store.get_funding_rates(market_id)
        assert [r.timestamp_ms for r in stored] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_invalid_chunk_size(self, database: Database) -> None:
        with pytest.raises(ValueError):
            SyncStore(database, chunk_size=0)


# ---------------------------------------------------------------------------
# Stats and the snapshot view
# ---------------------------------------------------------------------------


class TestStatsAndSnapshot:
    @pytest.mark.asyncio
    async def test_stats_allow_absent_open_interest(self, store: SyncStore) -> None:
        _, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        stat = NormalizedMarketStats("BTC-USD-PERP", None, Decimal("1500000.5"), 1000)

        assert await store.insert_market_stats([(market_id, stat)]) == 1
        assert await store.insert_market_stats([(market_id, stat)]) == 0

        stored = await store.get_market_stats(market_id)
        assert stored[0].open_interest is None
        assert stored[0].volume_24h == Decimal("1500000.5")

    @pytest.mark.asyncio
    async def test_stats_by_symbol(self, store: SyncStore) -> None:
        exchange_id, _ = await _seed(store, "BTC-USD-PERP")
        stat = NormalizedMarketStats("BTC-USD-PERP", Decimal("1"), Decimal("2"), 1000)
        assert await store.insert_market_stats_by_symbol(exchange_id, [("BTC-USD-PERP", stat)]) == 1
        assert await store.count_market_stats() == 1

    @pytest.mark.asyncio
    async def test_latest_snapshot(self, store: SyncStore) -> None:
        exchange_id, ids = await _seed(store, "BTC-USD-PERP")
        market_id = ids["BTC-USD-PERP"]
        await store.insert_funding_rates(
            exchange_id,
            [
                (market_id, make_rate("BTC-USD-PERP", "0.1", 100)),
                (market_id, make_rate("BTC-USD-PERP", "0.2", 200)),
            ],
        )
        await store.insert_market_stats(
            [(market_id, NormalizedMarketStats("BTC-USD-PERP", Decimal("5"), None, 150))]
        )

        snapshot = await store.get_latest_snapshot()
        assert snapshot == [
            {
                "token": "BTC",
                "exchange": "Paradex",
                "market_symbol": "BTC-USD-PERP",
                "funding_rate": Decimal("0.2"),
                "funding_ts": 200,
                "open_interest": Decimal("5"),
                "volume_24h": None,
                "stats_ts": 150,
            }
        ]
