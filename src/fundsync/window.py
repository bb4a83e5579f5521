"""Time-window policies and their resolution into concrete fetch ranges.

Resolution is pure: the current time and the market's last persisted
timestamp are always supplied by the caller, so the same inputs always
produce the same window.
"""

import time
from dataclasses import dataclass

MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start_ms, end_ms] range for a single fetch call."""

    start_ms: int
    end_ms: int

    @property
    def is_empty(self) -> bool:
        """True when start lies after end; callers treat this as nothing to do."""
        return self.start_ms > self.end_ms


@dataclass(frozen=True)
class Explicit:
    """Fetch exactly [start_ms, end_ms]."""

    start_ms: int
    end_ms: int


@dataclass(frozen=True)
class LookbackHours:
    """Fetch the last `hours` hours up to now."""

    hours: int


@dataclass(frozen=True)
class SinceLastOrLookbackHours:
    """Resume one millisecond after the last stored row, else look back `hours`.

    This is the steady-state policy: already-ingested instants are never
    re-requested, and the range grows on its own after downtime.
    """

    hours: int


WindowPolicy = Explicit | LookbackHours | SinceLastOrLookbackHours


def now_ms() -> int:
    """Current wall-clock time in Unix milliseconds."""
    return int(time.time() * 1000)


def resolve_window(
    policy: WindowPolicy,
    now: int,
    last_timestamp_ms: int | None = None,
) -> TimeWindow:
    """Resolve a policy into a TimeWindow.

    A result with start > end is returned as-is, not raised; see
    TimeWindow.is_empty.
    """
    if isinstance(policy, Explicit):
        return TimeWindow(policy.start_ms, policy.end_ms)
    if isinstance(policy, LookbackHours):
        return TimeWindow(now - policy.hours * MS_PER_HOUR, now)
    if isinstance(policy, SinceLastOrLookbackHours):
        if last_timestamp_ms is not None:
            return TimeWindow(last_timestamp_ms + 1, now)
        return TimeWindow(now - policy.hours * MS_PER_HOUR, now)
    raise TypeError(f"Unknown window policy: {policy!r}")


def describe_policy(policy: WindowPolicy) -> str:
    """Short human-readable form for log lines."""
    if isinstance(policy, Explicit):
        return f"between:{policy.start_ms}-{policy.end_ms}"
    if isinstance(policy, LookbackHours):
        return f"hours:{policy.hours}"
    return f"since_last:{policy.hours}"
