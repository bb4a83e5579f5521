"""Per-exchange run state and outcome reporting."""

from dataclasses import dataclass, field
from enum import Enum

from fundsync.logging import get_logger

logger = get_logger(__name__)


class RunState(str, Enum):
    """Lifecycle of one exchange run.

    IDLE -> LISTING_MARKETS -> FETCHING -> AGGREGATING -> PERSISTING -> DONE,
    with FAILED reachable from any step.
    """

    IDLE = "idle"
    LISTING_MARKETS = "listing_markets"
    FETCHING = "fetching_per_market"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncReport:
    """Outcome of one collection run for one exchange."""

    exchange: str
    kind: str  # "funding", "stats", or "markets"
    state: RunState = RunState.IDLE
    markets: int = 0
    skipped: int = 0
    rows_fetched: int = 0
    rows_inserted: int = 0
    note: str | None = None  # e.g. "unsupported" for recognized no-ops
    error: str | None = None
    history: list[RunState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE

    def advance(self, state: RunState) -> None:
        """Move to `state` and remember the transition."""
        self.state = state
        self.history.append(state)
        logger.debug("sync_state", kind=self.kind, state=state.value)

    def fail(self, exc: BaseException) -> None:
        self.error = str(exc) or type(exc).__name__
        self.advance(RunState.FAILED)

    @classmethod
    def unsupported(cls, exchange: str, kind: str) -> "SyncReport":
        """A completed no-op for an exchange without an adapter."""
        report = cls(exchange=exchange, kind=kind, note="unsupported")
        report.advance(RunState.DONE)
        return report

    @classmethod
    def failed(cls, exchange: str, kind: str, exc: BaseException) -> "SyncReport":
        report = cls(exchange=exchange, kind=kind)
        report.fail(exc)
        return report

    def log_fields(self) -> dict:
        return {
            "exchange": self.exchange,
            "kind": self.kind,
            "state": self.state.value,
            "markets": self.markets,
            "skipped": self.skipped,
            "rows_fetched": self.rows_fetched,
            "rows_inserted": self.rows_inserted,
            "note": self.note,
            "error": self.error,
        }
