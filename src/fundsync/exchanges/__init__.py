"""Exchange adapter layer -- per-venue decoding and normalization behind one interface."""

from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.bybit import BybitAdapter
from fundsync.exchanges.extended import ExtendedAdapter
from fundsync.exchanges.paradex import ParadexAdapter
from fundsync.exchanges.registry import create_adapter, supported_exchanges

__all__ = [
    "BybitAdapter",
    "ExchangeAdapter",
    "ExtendedAdapter",
    "ParadexAdapter",
    "create_adapter",
    "supported_exchanges",
]
