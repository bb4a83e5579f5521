"""Incremental funding-rate collection for one exchange.

For every market: look up the last stored funding timestamp, resolve the
fetch window, fetch and normalize through the exchange adapter, then persist
everything in chunked INSERT OR IGNORE transactions.

Failure policy is fail-fast per exchange: one market's NetworkError or
DecodeError cancels the other in-flight fetches and aborts the run before
anything is written. Re-running is always safe: persistence is idempotent and
SinceLastOrLookbackHours resumes from whatever was committed.
"""

from collections.abc import Callable

from fundsync.data.store import SyncStore
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.logging import get_logger
from fundsync.models import ExchangeRecord, MarketTarget, NormalizedFundingRate
from fundsync.sync.collector import MarketCollector
from fundsync.sync.report import RunState, SyncReport
from fundsync.window import WindowPolicy, describe_policy, now_ms, resolve_window

logger = get_logger(__name__)

DEFAULT_FUNDING_INTERVAL_MINUTES = 480


class FundingCollector(MarketCollector):
    """Fetches funding history for all markets of an exchange under a concurrency cap.

    Usage:
        collector = FundingCollector(store, max_concurrency=16)
        async with create_adapter("paradex", settings.exchange) as adapter:
            report = await collector.collect(exchange, adapter, SinceLastOrLookbackHours(24))
    """

    def __init__(
        self,
        store: SyncStore,
        max_concurrency: int = 16,
        funding_interval_minutes: int = DEFAULT_FUNDING_INTERVAL_MINUTES,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(store, max_concurrency)
        self._funding_interval_minutes = funding_interval_minutes
        self._clock = clock

    async def collect(
        self,
        exchange: ExchangeRecord,
        adapter: ExchangeAdapter,
        policy: WindowPolicy,
        backfill: bool = False,
    ) -> SyncReport:
        """Run one funding sync for `exchange`.

        Raises whatever the adapter or store raised; the report is only
        returned on success.
        """
        report = SyncReport(exchange=exchange.name, kind="funding")
        try:
            if await self._store.normalize_funding_interval(
                exchange.id, self._funding_interval_minutes
            ):
                logger.info(
                    "funding_interval_normalized",
                    exchange_id=exchange.id,
                    minutes=self._funding_interval_minutes,
                )

            report.advance(RunState.LISTING_MARKETS)
            targets = await self._select_targets(exchange, adapter, backfill)
            report.markets = len(targets)
            if not targets:
                logger.info("funding_no_markets", exchange_id=exchange.id, backfill=backfill)
                report.advance(RunState.DONE)
                return report

            report.advance(RunState.FETCHING)
            now = self._clock()

            async def fetch(target: MarketTarget) -> list[NormalizedFundingRate] | None:
                return await self._fetch_market(exchange, adapter, target, policy, now)

            results = await self._fan_out(targets, fetch)

            report.advance(RunState.AGGREGATING)
            by_id: list[tuple[int, NormalizedFundingRate]] = []
            by_symbol: list[tuple[str, NormalizedFundingRate]] = []
            for target, rows in zip(targets, results):
                if rows is None:
                    report.skipped += 1
                    continue
                if target.market_id is not None:
                    by_id.extend((target.market_id, row) for row in rows)
                else:
                    by_symbol.extend((target.market_symbol, row) for row in rows)
            report.rows_fetched = len(by_id) + len(by_symbol)

            report.advance(RunState.PERSISTING)
            inserted = 0
            if by_id:
                inserted += await self._store.insert_funding_rates(exchange.id, by_id)
            if by_symbol:
                inserted += await self._store.insert_funding_rates_by_symbol(
                    exchange.id, by_symbol
                )
            report.rows_inserted = inserted
            report.advance(RunState.DONE)
        except Exception as exc:
            report.fail(exc)
            logger.debug("funding_run_failed", exchange_id=exchange.id, error=report.error)
            raise

        logger.info(
            "funding_rows_persisted",
            exchange_id=exchange.id,
            window=describe_policy(policy),
            markets=report.markets,
            skipped=report.skipped,
            fetched=report.rows_fetched,
            inserted=report.rows_inserted,
        )
        return report

    async def _fetch_market(
        self,
        exchange: ExchangeRecord,
        adapter: ExchangeAdapter,
        target: MarketTarget,
        policy: WindowPolicy,
        now: int,
    ) -> list[NormalizedFundingRate] | None:
        """Fetch one market's window. None means the window was empty (skipped)."""
        if target.market_id is not None:
            last_ts = await self._store.last_funding_timestamp(target.market_id)
        else:
            last_ts = await self._store.last_funding_timestamp_by_symbol(
                exchange.id, target.market_symbol
            )

        window = resolve_window(policy, now, last_ts)
        if window.is_empty:
            logger.debug(
                "funding_market_skipped",
                market=target.market_symbol,
                start_ms=window.start_ms,
                end_ms=window.end_ms,
            )
            return None

        rows = await adapter.fetch_funding(target.market_symbol, window.start_ms, window.end_ms)
        logger.debug(
            "funding_market_fetched",
            market=target.market_symbol,
            start_ms=window.start_ms,
            end_ms=window.end_ms,
            rows=len(rows),
        )
        return rows
