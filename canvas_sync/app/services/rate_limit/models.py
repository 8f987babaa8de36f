"""Rate limiting data models.

This module contains the action catalogue, per-action limits and the
dataclasses for rate limit state and results.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from canvas_sync.app.exceptions import RateLimitExceededError


class ActionType(str, Enum):
    """Rate limited actions."""

    PIXEL_EDIT = "pixel_edit"
    TERRITORY_PURCHASE = "territory_purchase"
    AUCTION_BID = "auction_bid"
    API_REQUEST = "api_request"


class Period(str, Enum):
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"

    @property
    def seconds(self) -> int:
        return PERIOD_SECONDS[self]


PERIOD_SECONDS: Dict[Period, int] = {
    Period.SECOND: 1,
    Period.MINUTE: 60,
    Period.HOUR: 3600,
}

# Entries older than the longest window are purged
RETENTION_SECONDS = PERIOD_SECONDS[Period.HOUR]


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-action limits. Each period's hard ceiling is ``limit + burst``."""
    per_second: int
    per_minute: int
    per_hour: int
    burst: int = 0

    def limit_for(self, period: Period) -> int:
        return {
            Period.SECOND: self.per_second,
            Period.MINUTE: self.per_minute,
            Period.HOUR: self.per_hour,
        }[period]

    def ceiling_for(self, period: Period) -> int:
        return self.limit_for(period) + self.burst

    def scaled(self, factor: float) -> "RateLimitConfig":
        """Tightened copy: limits keep a floor of 1, burst a floor of 0."""
        return RateLimitConfig(
            per_second=max(1, math.floor(self.per_second * factor)),
            per_minute=max(1, math.floor(self.per_minute * factor)),
            per_hour=max(1, math.floor(self.per_hour * factor)),
            burst=max(0, math.floor(self.burst * factor)),
        )


DEFAULT_LIMITS: Dict[ActionType, RateLimitConfig] = {
    # Strict: no burst on cell edits
    ActionType.PIXEL_EDIT: RateLimitConfig(per_second=5, per_minute=100, per_hour=5000, burst=0),
    ActionType.TERRITORY_PURCHASE: RateLimitConfig(per_second=1, per_minute=5, per_hour=20, burst=2),
    ActionType.AUCTION_BID: RateLimitConfig(per_second=2, per_minute=10, per_hour=50, burst=3),
    ActionType.API_REQUEST: RateLimitConfig(per_second=10, per_minute=100, per_hour=1000, burst=20),
}

# Actions whose cadence is inspected for machine-regular patterns
WRITE_HEAVY_ACTIONS = frozenset({ActionType.PIXEL_EDIT})


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    retry_after: Optional[int] = None
    reason: Optional[str] = None
    period: Optional[Period] = None
    limit: Optional[int] = None

    def raise_for_status(self) -> None:
        """Raise RateLimitExceededError for a declined result."""
        if not self.allowed:
            raise RateLimitExceededError(
                period=self.period.value if self.period else "unknown",
                retry_after=self.retry_after or 1,
                detail=self.reason,
            )


@dataclass
class RateLimitRecord:
    """Sliding-window state for one (user, action type) pair.

    Each entry is ``(timestamp, amount)``: one entry per accepted call,
    weighted by the amount it consumed.
    """
    entries: List[Tuple[float, int]] = field(default_factory=list)
    counts: Dict[Period, int] = field(
        default_factory=lambda: {period: 0 for period in Period}
    )

    @property
    def timestamps(self) -> List[float]:
        return [ts for ts, _ in self.entries]

    @property
    def newest(self) -> Optional[float]:
        return self.entries[-1][0] if self.entries else None

    def refresh(self, now: float) -> None:
        """Purge entries outside the retention window and recount."""
        cutoff = now - RETENTION_SECONDS
        self.entries = [(ts, amount) for ts, amount in self.entries if ts > cutoff]
        for period in Period:
            window_start = now - period.seconds
            self.counts[period] = sum(
                amount for ts, amount in self.entries if ts > window_start
            )

    def record(self, now: float, amount: int) -> None:
        self.entries.append((now, amount))
        self.refresh(now)

    def oldest_in_window(self, now: float, period: Period) -> Optional[float]:
        window_start = now - period.seconds
        for ts, _ in self.entries:
            if ts > window_start:
                return ts
        return None

    def is_stale(self, now: float) -> bool:
        newest = self.newest
        return newest is None or newest < now - RETENTION_SECONDS


@dataclass
class SuspiciousActivityRecord:
    """Accumulated suspicion for one user."""
    score: int = 0
    patterns: Set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {"score": self.score, "patterns": sorted(self.patterns)}
