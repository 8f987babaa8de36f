"""Rate limiting for write-class actions.

Sliding window limits per user and action type over second, minute
and hour windows, with burst tolerance, new-account tightening and
suspicious pattern reporting.
"""

from canvas_sync.app.services.rate_limit.limiter import BOT_PATTERN, RateLimiter
from canvas_sync.app.services.rate_limit.models import (
    DEFAULT_LIMITS,
    PERIOD_SECONDS,
    WRITE_HEAVY_ACTIONS,
    ActionType,
    Period,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitResult,
    SuspiciousActivityRecord,
)

__all__ = [
    # Models
    "ActionType",
    "Period",
    "PERIOD_SECONDS",
    "RateLimitConfig",
    "RateLimitRecord",
    "RateLimitResult",
    "SuspiciousActivityRecord",
    "DEFAULT_LIMITS",
    "WRITE_HEAVY_ACTIONS",
    # Limiter
    "BOT_PATTERN",
    "RateLimiter",
]
