"""Command-level orchestration across exchanges.

SyncRunner wires the collectors to the exchange catalog and the adapter
registry. Runs over all active exchanges isolate failures per exchange: one
exchange's error is logged with its traceback and reported, the next
exchange still runs. Runs targeting a single named exchange propagate the
error to the caller instead.
"""

from collections.abc import Awaitable, Callable

from fundsync.config import AppSettings
from fundsync.data.store import SyncStore
from fundsync.exceptions import SyncError
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.registry import create_adapter
from fundsync.logging import bind_exchange, get_logger
from fundsync.models import ExchangeRecord
from fundsync.sync.funding import FundingCollector
from fundsync.sync.markets import MarketSyncer
from fundsync.sync.report import SyncReport
from fundsync.sync.stats import StatsCollector
from fundsync.window import WindowPolicy, now_ms

logger = get_logger(__name__)

# job(exchange, adapter, reports) appends one report per completed step
ExchangeJob = Callable[[ExchangeRecord, ExchangeAdapter, list[SyncReport]], Awaitable[None]]


class SyncRunner:
    """Runs markets / funding / stats syncs for one or all active exchanges.

    Usage:
        runner = SyncRunner(store, settings)
        reports = await runner.run_funding(None, settings.sync.window_policy())
    """

    def __init__(
        self,
        store: SyncStore,
        settings: AppSettings,
        adapter_factory: Callable[..., ExchangeAdapter | None] = create_adapter,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._settings = settings
        self._adapter_factory = adapter_factory
        self._clock = clock

        sync = settings.sync
        self.funding = FundingCollector(
            store,
            max_concurrency=sync.max_concurrency,
            funding_interval_minutes=sync.funding_interval_minutes,
            clock=clock,
        )
        self.stats = StatsCollector(store, max_concurrency=sync.max_concurrency)
        self.markets = MarketSyncer(store)

    # ──────────────────────────────────────────────
    # Commands
    # ──────────────────────────────────────────────

    async def run_init(self, policy: WindowPolicy) -> list[SyncReport]:
        """Markets, then funding, then stats for every active exchange."""

        async def job(exchange: ExchangeRecord, adapter: ExchangeAdapter, reports: list) -> None:
            reports.append(await self.markets.refresh(exchange, adapter))
            reports.append(await self.funding.collect(exchange, adapter, policy))
            reports.append(await self.stats.collect(exchange, adapter))

        return await self._run(None, "init", job)

    async def run_markets(self, name: str | None = None) -> list[SyncReport]:
        async def job(exchange: ExchangeRecord, adapter: ExchangeAdapter, reports: list) -> None:
            reports.append(await self.markets.refresh(exchange, adapter))

        return await self._run(name, "markets", job)

    async def run_funding(self, name: str | None, policy: WindowPolicy) -> list[SyncReport]:
        async def job(exchange: ExchangeRecord, adapter: ExchangeAdapter, reports: list) -> None:
            reports.append(await self.funding.collect(exchange, adapter, policy))

        return await self._run(name, "funding", job)

    async def run_stats(self, name: str | None = None) -> list[SyncReport]:
        async def job(exchange: ExchangeRecord, adapter: ExchangeAdapter, reports: list) -> None:
            reports.append(await self.stats.collect(exchange, adapter))

        return await self._run(name, "stats", job)

    async def run_backfill(self, name: str, policy: WindowPolicy) -> list[SyncReport]:
        """Refresh markets, then fetch funding and stats from the adapter's own catalog.

        The exchange must already exist and be active.
        """

        async def job(exchange: ExchangeRecord, adapter: ExchangeAdapter, reports: list) -> None:
            reports.append(await self.markets.refresh(exchange, adapter))
            reports.append(await self.funding.collect(exchange, adapter, policy, backfill=True))
            reports.append(await self.stats.collect(exchange, adapter, backfill=True))

        return await self._run(name, "backfill", job)

    async def run_exchange_add(self, name: str, policy: WindowPolicy) -> list[SyncReport]:
        """Register (or reactivate) an exchange, then backfill it."""
        exchange = await self._store.ensure_exchange(name)
        logger.info("exchange_added", exchange=exchange.name, exchange_id=exchange.id)
        return await self.run_backfill(exchange.name, policy)

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    async def _resolve_exchanges(self, name: str | None) -> list[ExchangeRecord]:
        if name is None:
            return await self._store.list_active_exchanges()
        exchange = await self._store.lookup_exchange(name)
        if exchange is None:
            raise SyncError(f"exchange not found or inactive: {name}", {"exchange": name})
        return [exchange]

    async def _run(self, name: str | None, kind: str, job: ExchangeJob) -> list[SyncReport]:
        exchanges = await self._resolve_exchanges(name)
        isolate = name is None
        reports: list[SyncReport] = []

        for exchange in exchanges:
            with bind_exchange(exchange.name):
                adapter = self._adapter_factory(exchange.name, self._settings.exchange, self._clock)
                if adapter is None:
                    logger.warning("exchange_unsupported", kind=kind)
                    reports.append(SyncReport.unsupported(exchange.name, kind))
                    continue

                try:
                    async with adapter:
                        await job(exchange, adapter, reports)
                except Exception as exc:
                    if not isolate:
                        raise
                    logger.error("exchange_sync_failed", kind=kind, error=str(exc), exc_info=True)
                    reports.append(SyncReport.failed(exchange.name, kind, exc))

        return reports
