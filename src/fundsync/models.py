"""Canonical data models shared by adapters, collectors, and the store.

CRITICAL: All rates, open interest, and volume values use Decimal. Never use
float for them. Timestamps are integer milliseconds since the Unix epoch.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class NormalizedMarket:
    """A perpetual market as listed by an exchange catalog."""

    exchange: str
    symbol: str  # canonical base asset, e.g. "BTC"
    market_symbol: str  # exchange-native, e.g. "BTC-USD-PERP"
    base_currency: str
    quote_currency: str
    is_active: bool = True


@dataclass(frozen=True)
class NormalizedFundingRate:
    """One settled funding rate for a market."""

    market_symbol: str
    rate: Decimal
    timestamp_ms: int


@dataclass(frozen=True)
class NormalizedMarketStats:
    """Point-in-time open interest and 24h volume snapshot.

    None means "could not be computed", never zero. open_interest is always
    USD-denominated when present.
    """

    market_symbol: str
    open_interest: Decimal | None
    volume_24h: Decimal | None
    timestamp_ms: int


@dataclass(frozen=True)
class ExchangeRecord:
    """Row from the exchanges table."""

    id: int
    name: str
    is_active: bool = True
    funding_interval_minutes: int | None = None


@dataclass(frozen=True)
class MarketRecord:
    """Row from the markets table, joined with its token symbol."""

    id: int
    exchange_id: int
    market_symbol: str
    symbol: str
    is_active: bool = True


@dataclass(frozen=True)
class MarketTarget:
    """A market scheduled for one fetch.

    market_id is None in backfill mode, where rows are keyed by the
    exchange-native symbol and resolved to an id at insert time.
    """

    market_symbol: str
    market_id: int | None = None


@dataclass
class StoredFundingRate:
    """A funding rate read back from the store."""

    market_id: int
    rate: Decimal
    timestamp_ms: int


@dataclass
class StoredMarketStats:
    """A market stats snapshot read back from the store."""

    market_id: int
    open_interest: Decimal | None
    volume_24h: Decimal | None
    timestamp_ms: int
