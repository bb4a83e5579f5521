"""Tests for the Paradex adapter.

Parsers are tested on raw bytes; the adapter is driven through
httpx.MockTransport so pagination runs against canned pages.
"""

import json
from decimal import Decimal

import httpx
import pytest

from fundsync.config import ExchangeApiSettings
from fundsync.exceptions import DecodeError, NetworkError
from fundsync.exchanges.paradex import (
    MAINNET_URL,
    ParadexAdapter,
    is_perp_symbol,
    parse_funding_page,
    parse_market_stats,
    parse_markets,
)

NOW = 1_700_003_600_000


def _body(payload: object) -> bytes:
    return json.dumps(payload).encode()


MARKETS_BODY = _body(
    {
        "results": [
            {"symbol": "BTC-USD-PERP", "base_currency": "BTC", "quote_currency": "USD"},
            {"symbol": "ETH-USD-perps", "base_currency": "ETH", "quote_currency": "USD"},
            {"symbol": "BTC-USD-100000-C", "base_currency": "BTC", "quote_currency": "USD"},
        ]
    }
)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class TestParseMarkets:
    def test_keeps_only_perps(self) -> None:
        markets = parse_markets(MARKETS_BODY)
        assert [m.market_symbol for m in markets] == ["BTC-USD-PERP", "ETH-USD-perps"]
        assert markets[0].symbol == "BTC"
        assert markets[0].quote_currency == "USD"
        assert markets[0].exchange == "paradex"

    def test_is_perp_symbol_case_insensitive(self) -> None:
        assert is_perp_symbol("sol-usd-perp")
        assert not is_perp_symbol("SOL-USD")

    def test_missing_results_is_decode_error(self) -> None:
        with pytest.raises(DecodeError):
            parse_markets(_body({"data": []}))


class TestParseFundingPage:
    def test_rows_and_cursor(self) -> None:
        rows, cursor = parse_funding_page(
            _body(
                {
                    "next": "abc",
                    "results": [
                        {"market": "BTC-USD-PERP", "funding_rate": "0.0001", "created_at": 1_700_000_000_001},
                        {"market": "BTC-USD-PERP", "funding_rate": -0.00002, "created_at": "1700000000002"},
                    ],
                }
            )
        )
        assert cursor == "abc"
        assert [r.rate for r in rows] == [Decimal("0.0001"), Decimal("-0.00002")]
        assert [r.timestamp_ms for r in rows] == [1_700_000_000_001, 1_700_000_000_002]

    def test_null_rate_dropped(self) -> None:
        rows, cursor = parse_funding_page(
            _body(
                {
                    "results": [
                        {"market": "BTC-USD-PERP", "funding_rate": None, "created_at": 1},
                        {"market": "BTC-USD-PERP", "funding_rate": "0.0003", "created_at": 2},
                    ]
                }
            )
        )
        assert cursor is None
        assert len(rows) == 1
        assert rows[0].timestamp_ms == 2

    def test_empty_next_means_last_page(self) -> None:
        _, cursor = parse_funding_page(_body({"next": "", "results": []}))
        assert cursor is None

    def test_missing_market_is_decode_error(self) -> None:
        with pytest.raises(DecodeError, match="market"):
            parse_funding_page(_body({"results": [{"funding_rate": "0.1", "created_at": 1}]}))

    def test_bad_rate_is_decode_error(self) -> None:
        with pytest.raises(DecodeError):
            parse_funding_page(
                _body({"results": [{"market": "X-PERP", "funding_rate": "n/a", "created_at": 1}]})
            )


class TestParseMarketStats:
    def test_oi_converted_with_mark_price(self) -> None:
        stats = parse_market_stats(
            _body(
                {
                    "results": [
                        {
                            "symbol": "BTC-USD-PERP",
                            "mark_price": "50000",
                            "underlying_price": "49000",
                            "open_interest": "2",
                            "volume_24h": "1000000",
                        }
                    ]
                }
            ),
            NOW,
        )
        assert stats[0].open_interest == Decimal("100000")
        assert stats[0].volume_24h == Decimal("1000000")
        assert stats[0].timestamp_ms == NOW

    def test_falls_back_to_last_traded_price(self) -> None:
        stats = parse_market_stats(
            _body(
                {
                    "results": [
                        {"symbol": "ETH-USD-PERP", "last_traded_price": "3000", "open_interest": "10"}
                    ]
                }
            ),
            NOW,
        )
        assert stats[0].open_interest == Decimal("30000")
        assert stats[0].volume_24h is None

    def test_no_price_leaves_oi_absent(self) -> None:
        stats = parse_market_stats(
            _body({"results": [{"symbol": "ETH-USD-PERP", "open_interest": "10", "volume_24h": "5"}]}),
            NOW,
        )
        assert stats[0].open_interest is None
        assert stats[0].volume_24h == Decimal("5")


# ---------------------------------------------------------------------------
# Adapter over MockTransport
# ---------------------------------------------------------------------------


def _adapter(handler) -> ParadexAdapter:  # type: ignore[no-untyped-def]
    return ParadexAdapter(
        ExchangeApiSettings(paradex_page_size=2),
        clock=lambda: NOW,
        transport=httpx.MockTransport(handler),
    )


class TestParadexAdapter:
    @pytest.mark.asyncio
    async def test_list_markets(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/markets"
            return httpx.Response(200, content=MARKETS_BODY)

        async with _adapter(handler) as adapter:
            markets = await adapter.list_markets()
        assert len(markets) == 2

    @pytest.mark.asyncio
    async def test_funding_follows_cursor_until_absent(self) -> None:
        pages = {
            None: {"next": "p2", "results": [{"market": "BTC-USD-PERP", "funding_rate": "0.1", "created_at": 10}]},
            "p2": {"next": "p3", "results": [{"market": "BTC-USD-PERP", "funding_rate": "0.2", "created_at": 20}]},
            "p3": {"results": [{"market": "BTC-USD-PERP", "funding_rate": "0.3", "created_at": 30}]},
        }
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=_body(pages[request.url.params.get("cursor")]))

        async with _adapter(handler) as adapter:
            rows = await adapter.fetch_funding("BTC-USD-PERP", 1, 100)

        assert [r.timestamp_ms for r in rows] == [10, 20, 30]
        assert len(requests) == 3
        first = requests[0].url.params
        assert first["market"] == "BTC-USD-PERP"
        assert first["start_at"] == "1"
        assert first["end_at"] == "100"
        assert first["page_size"] == "2"
        assert "cursor" not in first

    @pytest.mark.asyncio
    async def test_repeated_cursor_terminates(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(
                200,
                content=_body(
                    {"next": "same", "results": [{"market": "X-PERP", "funding_rate": "0.1", "created_at": calls}]}
                ),
            )

        async with _adapter(handler) as adapter:
            rows = await adapter.fetch_funding("X-PERP", 0, 100)
        assert calls == 2
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_http_error_propagates(self) -> None:
        async with _adapter(lambda request: httpx.Response(500)) as adapter:
            with pytest.raises(NetworkError):
                await adapter.fetch_funding("X-PERP", 0, 100)

    @pytest.mark.asyncio
    async def test_stats_uses_summary_endpoint(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/markets/summary"
            assert request.url.params["market"] == "BTC-USD-PERP"
            return httpx.Response(
                200,
                content=_body(
                    {"results": [{"symbol": "BTC-USD-PERP", "mark_price": "2", "open_interest": "3"}]}
                ),
            )

        async with _adapter(handler) as adapter:
            stats = await adapter.fetch_stats("BTC-USD-PERP")
        assert stats[0].open_interest == Decimal("6")
        assert stats[0].timestamp_ms == NOW

    def test_mainnet_by_default(self) -> None:
        adapter = ParadexAdapter(ExchangeApiSettings())
        assert adapter._http.base_url == MAINNET_URL
