"""Name-keyed registry of exchange adapters.

Adding an exchange means writing one ExchangeAdapter subclass and one entry
in ADAPTERS; collectors never branch on exchange names.
"""

from collections.abc import Callable

from fundsync.config import ExchangeApiSettings
from fundsync.exchanges.base import ExchangeAdapter
from fundsync.exchanges.bybit import BybitAdapter
from fundsync.exchanges.extended import ExtendedAdapter
from fundsync.exchanges.paradex import ParadexAdapter
from fundsync.window import now_ms

AdapterFactory = Callable[[ExchangeApiSettings, Callable[[], int]], ExchangeAdapter]

ADAPTERS: dict[str, AdapterFactory] = {
    ParadexAdapter.name: ParadexAdapter,
    ExtendedAdapter.name: ExtendedAdapter,
    BybitAdapter.name: BybitAdapter,
}


def normalize_name(name: str) -> str:
    return name.strip().lower()


def supported_exchanges() -> list[str]:
    """Registry keys, sorted."""
    return sorted(ADAPTERS)


def is_supported(name: str) -> bool:
    return normalize_name(name) in ADAPTERS


def create_adapter(
    name: str,
    settings: ExchangeApiSettings,
    clock: Callable[[], int] = now_ms,
) -> ExchangeAdapter | None:
    """Build the adapter for `name` (case-insensitive).

    Returns None for unsupported exchanges; callers log and skip.
    """
    factory = ADAPTERS.get(normalize_name(name))
    if factory is None:
        return None
    return factory(settings, clock)
