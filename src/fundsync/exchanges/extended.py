"""Extended (Starknet) public REST adapter.

Endpoints:
- GET /info/markets                  -> {"data": [{name, assetName, active, ...}]}
- GET /info/{market}/funding         -> {"data": [{m, f, T}]}
- GET /info/markets/{market}/stats   -> {"data": {openInterest, dailyVolume, ...}}

Extended reports openInterest and dailyVolume in USD already; both pass
through unchanged.
"""

from collections.abc import Callable

import httpx

from fundsync.config import ExchangeApiSettings
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.decoding import (
    int_or_str,
    load_json,
    optional_decimal,
    require,
    require_list,
)
from fundsync.exchanges.http import HttpClient
from fundsync.logging import get_logger
from fundsync.models import NormalizedFundingRate, NormalizedMarket, NormalizedMarketStats
from fundsync.window import now_ms

logger = get_logger(__name__)

MAINNET_URL = "https://api.extended.exchange/api/v1"
TESTNET_URL = "https://api.starknet.sepolia.extended.exchange/api/v1"


def parse_markets(raw: bytes) -> list[NormalizedMarket]:
    """Decode /info/markets. Quote currency is the suffix of e.g. "BTC-USD"."""
    body = load_json(raw, "extended markets")
    markets = []
    for item in require_list(body, "data", "extended markets"):
        name = require(item, "name", "extended market")
        asset = require(item, "assetName", "extended market")
        parts = name.split("-")
        markets.append(
            NormalizedMarket(
                exchange="extended",
                symbol=asset,
                market_symbol=name,
                base_currency=asset,
                quote_currency=parts[1] if len(parts) > 1 else "",
                is_active=bool(require(item, "active", "extended market")),
            )
        )
    return markets


def parse_funding(raw: bytes) -> list[NormalizedFundingRate]:
    """Decode /info/{market}/funding, dropping rows without a rate."""
    body = load_json(raw, "extended funding")
    rows = []
    for item in require_list(body, "data", "extended funding"):
        market = require(item, "m", "extended funding row")
        rate = optional_decimal(item.get("f"), "f")
        if rate is None:
            continue
        rows.append(
            NormalizedFundingRate(
                market_symbol=market,
                rate=rate,
                timestamp_ms=int_or_str(require(item, "T", "extended funding row"), "T"),
            )
        )
    return rows


def parse_market_stats(raw: bytes, market_symbol: str, timestamp_ms: int) -> NormalizedMarketStats:
    """Decode /info/markets/{market}/stats for one market."""
    body = load_json(raw, "extended stats")
    data = require(body, "data", "extended stats")
    return NormalizedMarketStats(
        market_symbol=market_symbol,
        open_interest=optional_decimal(
            require(data, "openInterest", "extended stats data"), "openInterest"
        ),
        volume_24h=optional_decimal(
            require(data, "dailyVolume", "extended stats data"), "dailyVolume"
        ),
        timestamp_ms=timestamp_ms,
    )


class ExtendedAdapter(ExchangeAdapter):
    """Extended adapter over the public REST API."""

    name = "extended"

    def __init__(
        self,
        settings: ExchangeApiSettings,
        clock: Callable[[], int] = now_ms,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(clock)
        self._http = HttpClient(
            TESTNET_URL if settings.testnet else MAINNET_URL,
            timeout=settings.http_timeout,
            transport=transport,
        )

    async def connect(self) -> None:
        await self._http.open()

    async def close(self) -> None:
        await self._http.close()

    async def list_markets(self) -> list[NormalizedMarket]:
        raw = await self._http.get_bytes("/info/markets")
        markets = parse_markets(raw)
        logger.debug("extended_markets_listed", count=len(markets))
        return markets

    async def fetch_funding(
        self, market_symbol: str, start_ms: int, end_ms: int
    ) -> list[NormalizedFundingRate]:
        raw = await self._http.get_bytes(
            f"/info/{market_symbol}/funding",
            {"startTime": start_ms, "endTime": end_ms},
        )
        return parse_funding(raw)

    async def fetch_stats(self, market_symbol: str) -> list[NormalizedMarketStats]:
        raw = await self._http.get_bytes(f"/info/markets/{market_symbol}/stats")
        return [parse_market_stats(raw, market_symbol, self._clock())]
