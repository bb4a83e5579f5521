"""Paradex public REST adapter.

Endpoints:
- GET /markets                   -> market catalog (perps only are kept)
- GET /funding/data              -> funding history, cursor-paginated via `next`
- GET /markets/summary?market=   -> mark/underlying/last price, OI, 24h volume

PARADEX CONVENTION: open_interest is reported in base-asset units and must be
converted to USD with a price from the mark -> underlying -> last chain.
volume_24h is already USD.
"""

from collections.abc import Callable
from typing import Any

import httpx

from fundsync.config import ExchangeApiSettings
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.decoding import (
    base_oi_to_usd,
    int_or_str,
    load_json,
    optional_decimal,
    price_fallback,
    require,
    require_list,
)
from fundsync.exchanges.http import HttpClient
from fundsync.logging import get_logger
from fundsync.models import NormalizedFundingRate, NormalizedMarket, NormalizedMarketStats
from fundsync.window import now_ms

logger = get_logger(__name__)

MAINNET_URL = "https://api.prod.paradex.trade/v1"
TESTNET_URL = "https://api.testnet.paradex.trade/v1"

_PERP_SUFFIXES = ("-PERP", "-PERPS")


def is_perp_symbol(symbol: str) -> bool:
    """True for perpetual market symbols such as BTC-USD-PERP (any case)."""
    return symbol.upper().endswith(_PERP_SUFFIXES)


def parse_markets(raw: bytes) -> list[NormalizedMarket]:
    """Decode /markets, keeping perpetual contracts only."""
    body = load_json(raw, "paradex markets")
    markets = []
    for item in require_list(body, "results", "paradex markets"):
        symbol = require(item, "symbol", "paradex market")
        if not is_perp_symbol(symbol):
            continue
        base = require(item, "base_currency", "paradex market")
        markets.append(
            NormalizedMarket(
                exchange="paradex",
                symbol=base,
                market_symbol=symbol,
                base_currency=base,
                quote_currency=require(item, "quote_currency", "paradex market"),
                is_active=True,
            )
        )
    return markets


def parse_funding_page(raw: bytes) -> tuple[list[NormalizedFundingRate], str | None]:
    """Decode one /funding/data page into rows and the next cursor.

    Rows with a null funding_rate are dropped, not defaulted to zero.
    """
    body = load_json(raw, "paradex funding")
    rows = []
    for item in require_list(body, "results", "paradex funding"):
        market = require(item, "market", "paradex funding row")
        rate = optional_decimal(item.get("funding_rate"), "funding_rate")
        if rate is None:
            continue
        rows.append(
            NormalizedFundingRate(
                market_symbol=market,
                rate=rate,
                timestamp_ms=int_or_str(
                    require(item, "created_at", "paradex funding row"), "created_at"
                ),
            )
        )
    next_cursor = body.get("next") or None
    return rows, next_cursor


def parse_market_stats(raw: bytes, timestamp_ms: int) -> list[NormalizedMarketStats]:
    """Decode /markets/summary into USD-denominated stats snapshots."""
    body = load_json(raw, "paradex summary")
    out = []
    for item in require_list(body, "results", "paradex summary"):
        symbol = require(item, "symbol", "paradex summary row")
        if not is_perp_symbol(symbol):
            continue
        price = price_fallback(
            optional_decimal(item.get("mark_price"), "mark_price"),
            optional_decimal(item.get("underlying_price"), "underlying_price"),
            optional_decimal(item.get("last_traded_price"), "last_traded_price"),
        )
        open_interest = optional_decimal(item.get("open_interest"), "open_interest")
        out.append(
            NormalizedMarketStats(
                market_symbol=symbol,
                open_interest=base_oi_to_usd(open_interest, price),
                volume_24h=optional_decimal(item.get("volume_24h"), "volume_24h"),
                timestamp_ms=timestamp_ms,
            )
        )
    return out


class ParadexAdapter(ExchangeAdapter):
    """Paradex adapter over the public REST API."""

    name = "paradex"

    def __init__(
        self,
        settings: ExchangeApiSettings,
        clock: Callable[[], int] = now_ms,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(clock)
        self._page_size = settings.paradex_page_size
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
        raw = await self._http.get_bytes("/markets")
        markets = parse_markets(raw)
        logger.debug("paradex_markets_listed", count=len(markets))
        return markets

    async def fetch_funding(
        self, market_symbol: str, start_ms: int, end_ms: int
    ) -> list[NormalizedFundingRate]:
        """Follow `next` cursors until the window is exhausted.

        Pages are requested strictly in source order; a repeated cursor ends
        the walk so a misbehaving API cannot loop forever.
        """
        params: dict[str, Any] = {
            "market": market_symbol,
            "start_at": start_ms,
            "end_at": end_ms,
            "page_size": self._page_size,
        }
        rows: list[NormalizedFundingRate] = []
        seen_cursors: set[str] = set()
        pages = 0

        while True:
            raw = await self._http.get_bytes("/funding/data", params)
            page, next_cursor = parse_funding_page(raw)
            rows.extend(page)
            pages += 1

            if next_cursor is None or next_cursor in seen_cursors:
                break
            seen_cursors.add(next_cursor)
            params = {**params, "cursor": next_cursor}

        logger.debug(
            "paradex_funding_fetched",
            market=market_symbol,
            pages=pages,
            rows=len(rows),
        )
        return rows

    async def fetch_stats(self, market_symbol: str) -> list[NormalizedMarketStats]:
        raw = await self._http.get_bytes("/markets/summary", {"market": market_symbol})
        return parse_market_stats(raw, self._clock())
