"""Abstract exchange adapter interface.

Defines the contract every supported exchange implements. Collectors depend
only on this interface; decoding and unit normalization for each venue stay
inside its concrete adapter.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Self

from fundsync.models import NormalizedFundingRate, NormalizedMarket, NormalizedMarketStats
from fundsync.window import now_ms


class ExchangeAdapter(ABC):
    """Abstract base class for exchange adapters.

    Subclasses set `name`, the lowercase registry key.
    The clock supplies "now" in milliseconds for stats snapshots.
    """

    name: str = ""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock

    async def connect(self) -> None:
        """Open network resources. Default: nothing to open."""

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    @abstractmethod
    async def list_markets(self) -> list[NormalizedMarket]:
        """Return the exchange's perpetual markets in canonical form."""
        ...

    @abstractmethod
    async def fetch_funding(
        self, market_symbol: str, start_ms: int, end_ms: int
    ) -> list[NormalizedFundingRate]:
        """Return every settled funding rate for the market within [start_ms, end_ms].

        Pagination is handled here: the result covers the complete window.
        Rows without a rate are dropped.
        """
        ...

    @abstractmethod
    async def fetch_stats(self, market_symbol: str) -> list[NormalizedMarketStats]:
        """Return a current open interest / 24h volume snapshot.

        Some venues answer with several markets; callers pick the row whose
        market_symbol matches.
        """
        ...
