"""Market catalog refresh: adapter listing -> tokens/markets upsert."""

from fundsync.data.store import SyncStore
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.logging import get_logger
from fundsync.models import ExchangeRecord
from fundsync.sync.report import RunState, SyncReport

logger = get_logger(__name__)


class MarketSyncer:
    """Keeps the local market catalog in line with each exchange's listing.

    Markets are never deleted; a market the exchange reports inactive is
    flagged inactive so its history stays attributable.
    """

    def __init__(self, store: SyncStore) -> None:
        self._store = store

    async def refresh(self, exchange: ExchangeRecord, adapter: ExchangeAdapter) -> SyncReport:
        report = SyncReport(exchange=exchange.name, kind="markets")
        try:
            report.advance(RunState.LISTING_MARKETS)
            markets = await adapter.list_markets()
            report.markets = len(markets)
            report.rows_fetched = len(markets)

            report.advance(RunState.PERSISTING)
            report.rows_inserted = await self._store.upsert_markets(exchange.id, markets)
            report.advance(RunState.DONE)
        except Exception as exc:
            report.fail(exc)
            raise

        logger.info("markets_upserted", exchange_id=exchange.id, count=report.rows_inserted)
        return report
