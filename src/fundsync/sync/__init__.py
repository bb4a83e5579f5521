"""Sync services: funding and stats collectors, market catalog refresh, command runner."""

from fundsync.sync.funding import FundingCollector
from fundsync.sync.markets import MarketSyncer
from fundsync.sync.report import RunState, SyncReport
from fundsync.sync.runner import SyncRunner
from fundsync.sync.stats import StatsCollector

__all__ = [
    "FundingCollector",
    "MarketSyncer",
    "RunState",
    "StatsCollector",
    "SyncReport",
    "SyncRunner",
]
