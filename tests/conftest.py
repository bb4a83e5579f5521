"""Shared test fixtures for the funding sync engine."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from fundsync.config import AppSettings, DatabaseSettings, ExchangeApiSettings, SyncSettings
from fundsync.data.database import Database
from fundsync.data.store import SyncStore
from fundsync.exceptions import NetworkError
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.models import NormalizedFundingRate, NormalizedMarket, NormalizedMarketStats

NOW_MS = 1_700_003_600_000


class FakeAdapter(ExchangeAdapter):
    """In-memory adapter serving canned markets, funding history, and stats.

    Funding is filtered to the requested window like a real venue. Records
    every fetch_funding call and the peak number of concurrent fetches.
    """

    name = "fake"

    def __init__(
        self,
        markets: list[NormalizedMarket] | None = None,
        funding: dict[str, list[NormalizedFundingRate]] | None = None,
        stats: dict[str, list[NormalizedMarketStats]] | None = None,
        fail_on: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(clock=lambda: NOW_MS)
        self.markets = markets or []
        self.funding = funding or {}
        self.stats = stats or {}
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[tuple[str, int, int]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def list_markets(self) -> list[NormalizedMarket]:
        return list(self.markets)

    async def fetch_funding(
        self, market_symbol: str, start_ms: int, end_ms: int
    ) -> list[NormalizedFundingRate]:
        self.calls.append((market_symbol, start_ms, end_ms))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if market_symbol in self.fail_on:
                raise NetworkError(f"HTTP 503 for {market_symbol}", {"status": 503})
            return [
                row
                for row in self.funding.get(market_symbol, [])
                if start_ms <= row.timestamp_ms <= end_ms
            ]
        finally:
            self.in_flight -= 1

    async def fetch_stats(self, market_symbol: str) -> list[NormalizedMarketStats]:
        if market_symbol in self.fail_on:
            raise NetworkError(f"HTTP 503 for {market_symbol}", {"status": 503})
        return list(self.stats.get(market_symbol, []))


def make_market(market_symbol: str, exchange: str = "paradex", active: bool = True) -> NormalizedMarket:
    base = market_symbol.split("-")[0]
    return NormalizedMarket(
        exchange=exchange,
        symbol=base,
        market_symbol=market_symbol,
        base_currency=base,
        quote_currency="USD",
        is_active=active,
    )


def make_rate(market_symbol: str, rate: str, timestamp_ms: int) -> NormalizedFundingRate:
    return NormalizedFundingRate(market_symbol=market_symbol, rate=Decimal(rate), timestamp_ms=timestamp_ms)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> AppSettings:
    """Return AppSettings with small test defaults, independent of the environment."""
    return AppSettings(
        log_level="DEBUG",
        sync=SyncSettings(max_concurrency=4, db_chunk_size=1000),
        db=DatabaseSettings(path="unused.db", pool_size=6, write_headroom=2),
        exchange=ExchangeApiSettings(testnet=False, http_timeout=5.0),
    )


@pytest_asyncio.fixture
async def database(tmp_path) -> Database:
    """Connected pooled database in a temporary directory."""
    db = Database(str(tmp_path / "funding.db"), pool_size=6)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> SyncStore:
    return SyncStore(database, chunk_size=1000)
