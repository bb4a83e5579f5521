"""Open interest / 24h volume snapshot collection for one exchange."""

from fundsync.exchanges.base import ExchangeAdapter
from fundsync.logging import get_logger
from fundsync.models import ExchangeRecord, MarketTarget, NormalizedMarketStats
from fundsync.sync.collector import MarketCollector
from fundsync.sync.report import RunState, SyncReport

logger = get_logger(__name__)


class StatsCollector(MarketCollector):
    """Snapshots stats for every market of an exchange under a concurrency cap.

    Same market selection, fan-out, and fail-fast policy as FundingCollector;
    there is no time window, each run stores one snapshot per market stamped
    with the adapter's clock.
    """

    async def collect(
        self,
        exchange: ExchangeRecord,
        adapter: ExchangeAdapter,
        backfill: bool = False,
    ) -> SyncReport:
        report = SyncReport(exchange=exchange.name, kind="stats")
        try:
            report.advance(RunState.LISTING_MARKETS)
            targets = await self._select_targets(exchange, adapter, backfill)
            report.markets = len(targets)
            if not targets:
                logger.info("stats_no_markets", exchange_id=exchange.id, backfill=backfill)
                report.advance(RunState.DONE)
                return report

            report.advance(RunState.FETCHING)

            async def fetch(target: MarketTarget) -> NormalizedMarketStats | None:
                stats = await adapter.fetch_stats(target.market_symbol)
                return next((s for s in stats if s.market_symbol == target.market_symbol), None)

            results = await self._fan_out(targets, fetch)

            report.advance(RunState.AGGREGATING)
            by_id: list[tuple[int, NormalizedMarketStats]] = []
            by_symbol: list[tuple[str, NormalizedMarketStats]] = []
            for target, stat in zip(targets, results):
                if stat is None:
                    report.skipped += 1
                    logger.debug("stats_market_missing", market=target.market_symbol)
                elif target.market_id is not None:
                    by_id.append((target.market_id, stat))
                else:
                    by_symbol.append((target.market_symbol, stat))
            report.rows_fetched = len(by_id) + len(by_symbol)

            report.advance(RunState.PERSISTING)
            inserted = 0
            if by_id:
                inserted += await self._store.insert_market_stats(by_id)
            if by_symbol:
                inserted += await self._store.insert_market_stats_by_symbol(exchange.id, by_symbol)
            report.rows_inserted = inserted
            report.advance(RunState.DONE)
        except Exception as exc:
            report.fail(exc)
            raise

        logger.info(
            "stats_rows_persisted",
            exchange_id=exchange.id,
            markets=report.markets,
            skipped=report.skipped,
            inserted=report.rows_inserted,
        )
        return report
