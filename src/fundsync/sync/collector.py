"""Shared scaffolding for per-market collectors: market selection and bounded fan-out."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from fundsync.data.store import SyncStore
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.logging import get_logger
from fundsync.models import ExchangeRecord, MarketTarget

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def bounded_gather(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """Run worker(item) for every item with at most `limit` in flight.

    Results come back in input order. The first failure cancels every
    sibling still running or waiting, then propagates.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    tasks = [asyncio.create_task(run(item)) for item in items]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class MarketCollector:
    """Base for collectors that visit every market of one exchange.

    Normal mode reads active markets from the store. Backfill mode asks the
    adapter for its catalog instead, because local market rows may not be
    materialized yet; rows are then keyed by exchange-native symbol.
    """

    def __init__(self, store: SyncStore, max_concurrency: int = 16) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._max_concurrency = max_concurrency

    async def _select_targets(
        self,
        exchange: ExchangeRecord,
        adapter: ExchangeAdapter,
        backfill: bool,
    ) -> list[MarketTarget]:
        if backfill:
            markets = await adapter.list_markets()
            return [MarketTarget(m.market_symbol) for m in markets if m.is_active]
        records = await self._store.list_active_markets(exchange.id)
        return [MarketTarget(r.market_symbol, r.id) for r in records]

    async def _fan_out(
        self,
        targets: Sequence[MarketTarget],
        worker: Callable[[MarketTarget], Awaitable[R]],
    ) -> list[R]:
        return await bounded_gather(targets, worker, self._max_concurrency)
