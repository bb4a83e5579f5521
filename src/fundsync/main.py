"""Entry point for the funding sync engine.

Loads settings from the environment / .env, configures logging, opens the
SQLite pool, and dispatches SYNC_MODE to the SyncRunner:

- init:          markets -> funding -> stats for every active exchange
- markets:       refresh market catalogs (SYNC_EXCHANGE narrows to one)
- funding:       incremental funding-rate sync (SYNC_EXCHANGE narrows to one)
- stats:         open interest / 24h volume snapshot (SYNC_EXCHANGE narrows to one)
- backfill:      SYNC_EXCHANGE required; fetch from the adapter's own catalog
- exchange_add:  SYNC_EXCHANGE required; register the exchange, then backfill

Exits with status 1 on a SyncError or when any exchange run failed.
"""

import asyncio

from fundsync.config import AppSettings
from fundsync.data.database import Database
from fundsync.data.store import SyncStore
from fundsync.exceptions import SyncError
from fundsync.logging import get_logger, setup_logging
from fundsync.sync.report import SyncReport
from fundsync.sync.runner import SyncRunner

_NEEDS_EXCHANGE = ("backfill", "exchange_add")


async def dispatch(runner: SyncRunner, settings: AppSettings) -> list[SyncReport]:
    """Run the command selected by settings.sync.mode."""
    sync = settings.sync
    mode = sync.mode
    policy = sync.window_policy()

    if mode in _NEEDS_EXCHANGE and not sync.exchange:
        raise SyncError(f"mode {mode} requires SYNC_EXCHANGE", {"mode": mode})

    if mode == "init":
        return await runner.run_init(policy)
    if mode == "markets":
        return await runner.run_markets(sync.exchange)
    if mode == "funding":
        return await runner.run_funding(sync.exchange, policy)
    if mode == "stats":
        return await runner.run_stats(sync.exchange)
    if mode == "backfill":
        return await runner.run_backfill(sync.exchange, policy)  # type: ignore[arg-type]
    return await runner.run_exchange_add(sync.exchange, policy)  # type: ignore[arg-type]


async def run() -> int:
    """Run one sync command. Returns the process exit status."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("fundsync.main")

    logger.info(
        "sync_starting",
        mode=settings.sync.mode,
        exchange=settings.sync.exchange,
        db_path=settings.db.path,
        max_concurrency=settings.sync.max_concurrency,
    )

    # 3. Open storage and run
    try:
        async with Database(settings.db.path, pool_size=settings.db.pool_size) as database:
            store = SyncStore(database, chunk_size=settings.sync.db_chunk_size)
            runner = SyncRunner(store, settings)
            reports = await dispatch(runner, settings)
    except SyncError as exc:
        logger.error("sync_aborted", error=str(exc), **exc.context)
        return 1

    for report in reports:
        logger.info("sync_report", **report.log_fields())

    failed = [r.exchange for r in reports if not r.ok]
    logger.info("sync_finished", reports=len(reports), failed=failed)
    return 1 if failed else 0


def main() -> None:
    """Synchronous entry point."""
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
