"""Bybit adapter via ccxt async.

Wraps ccxt.async_support.bybit for the linear perpetual catalog, funding
history, and ticker-based stats. Raw `info` fields are decoded with the
shared tolerant helpers instead of ccxt's float-parsed values, so rates keep
their exact decimal form.

CRITICAL implementation notes:
- Always pass endTime to Bybit funding rate history; walk BACKWARD from the
  window end, 200 records per call.
- Ticker openInterest is in base coin; convert with markPrice -> indexPrice
  -> lastPrice. turnover24h is already quote-currency (USD) volume.
- Use ccxt unified symbols like BTC/USDT:USDT as the market symbol.
"""

from collections.abc import Callable
from typing import Any

import ccxt.async_support as ccxt_async

from fundsync.config import ExchangeApiSettings
from fundsync.exceptions import DecodeError, NetworkError
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.decoding import (
    base_oi_to_usd,
    int_or_str,
    optional_decimal,
    price_fallback,
    require,
)
from fundsync.logging import get_logger
from fundsync.models import NormalizedFundingRate, NormalizedMarket, NormalizedMarketStats
from fundsync.window import now_ms

logger = get_logger(__name__)

FUNDING_PAGE_LIMIT = 200


def decode_funding_row(record: Any) -> NormalizedFundingRate | None:
    """Decode one ccxt funding history entry; None when it carries no rate."""
    info = require(record, "info", "bybit funding row") or {}
    symbol = require(record, "symbol", "bybit funding row")
    rate = optional_decimal(info.get("fundingRate", record.get("fundingRate")), "fundingRate")
    if rate is None:
        return None
    timestamp = record_timestamp(record)
    if timestamp is None:
        raise DecodeError("missing funding timestamp in bybit funding row", {"symbol": symbol})
    return NormalizedFundingRate(market_symbol=symbol, rate=rate, timestamp_ms=timestamp)


def record_timestamp(record: Any) -> int | None:
    """Timestamp of a raw funding history entry, with or without a rate."""
    info = require(record, "info", "bybit funding row") or {}
    timestamp = info.get("fundingRateTimestamp", record.get("timestamp"))
    if timestamp is None:
        return None
    return int_or_str(timestamp, "fundingRateTimestamp")


def decode_ticker_stats(
    market_symbol: str, ticker: Any, timestamp_ms: int
) -> NormalizedMarketStats:
    """Decode a ccxt ticker into a USD open interest / volume snapshot."""
    info = require(ticker, "info", "bybit ticker") or {}
    price = price_fallback(
        optional_decimal(info.get("markPrice"), "markPrice"),
        optional_decimal(info.get("indexPrice"), "indexPrice"),
        optional_decimal(info.get("lastPrice"), "lastPrice"),
    )
    open_interest = optional_decimal(info.get("openInterest"), "openInterest")
    return NormalizedMarketStats(
        market_symbol=market_symbol,
        open_interest=base_oi_to_usd(open_interest, price),
        volume_24h=optional_decimal(info.get("turnover24h"), "turnover24h"),
        timestamp_ms=timestamp_ms,
    )


class BybitAdapter(ExchangeAdapter):
    """Bybit linear perpetuals through ccxt's async client."""

    name = "bybit"

    def __init__(
        self,
        settings: ExchangeApiSettings,
        clock: Callable[[], int] = now_ms,
        exchange: ccxt_async.bybit | None = None,
    ) -> None:
        super().__init__(clock)
        if exchange is None:
            exchange = ccxt_async.bybit(
                {
                    "enableRateLimit": True,
                    "timeout": int(settings.http_timeout * 1000),
                    "options": {"defaultType": "swap"},
                }
            )
            if settings.testnet:
                exchange.set_sandbox_mode(True)
        self._exchange = exchange

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke a ccxt method, translating its errors into sync errors."""
        try:
            return await getattr(self._exchange, method)(*args, **kwargs)
        except ccxt_async.BadResponse as exc:
            raise DecodeError(f"bybit {method} returned a malformed response: {exc}") from exc
        except ccxt_async.BaseError as exc:
            raise NetworkError(f"bybit {method} failed: {exc}", {"method": method}) from exc

    async def list_markets(self) -> list[NormalizedMarket]:
        """Return linear perpetual swaps, excluding spot, inverse, and options."""
        markets = await self._call("load_markets", True)
        out = []
        for symbol, market in markets.items():
            if not (market.get("linear") and market.get("swap")):
                continue
            active = market.get("active")
            out.append(
                NormalizedMarket(
                    exchange="bybit",
                    symbol=market["base"],
                    market_symbol=symbol,
                    base_currency=market["base"],
                    quote_currency=market["quote"],
                    is_active=True if active is None else bool(active),
                )
            )
        logger.debug("bybit_markets_listed", count=len(out))
        return out

    async def fetch_funding(
        self, market_symbol: str, start_ms: int, end_ms: int
    ) -> list[NormalizedFundingRate]:
        """Walk BACKWARD from end_ms to start_ms using endTime pagination.

        Progress is tracked on the raw page timestamps, so a page whose
        entries all lack a rate still moves the walk further back.
        Returns rows in chronological order.
        """
        rows: list[NormalizedFundingRate] = []
        current_end = end_ms

        while current_end >= start_ms:
            batch = await self._call(
                "fetch_funding_rate_history",
                market_symbol,
                None,
                FUNDING_PAGE_LIMIT,
                {"endTime": current_end},
            )
            if not batch:
                break

            page = [row for row in map(decode_funding_row, batch) if row is not None]
            rows.extend(r for r in page if start_ms <= r.timestamp_ms <= end_ms)

            stamps = [ts for ts in map(record_timestamp, batch) if ts is not None]
            if not stamps:
                break
            oldest_ts = min(stamps)
            if oldest_ts >= current_end or oldest_ts <= start_ms:
                break  # no progress, or window start reached
            current_end = oldest_ts - 1

        rows.sort(key=lambda r: r.timestamp_ms)
        logger.debug("bybit_funding_fetched", market=market_symbol, rows=len(rows))
        return rows

    async def fetch_stats(self, market_symbol: str) -> list[NormalizedMarketStats]:
        ticker = await self._call("fetch_ticker", market_symbol)
        return [decode_ticker_stats(market_symbol, ticker, self._clock())]
