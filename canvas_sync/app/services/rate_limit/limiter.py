"""Multi-period rate limiter for write-class actions.

Tracks every (user, action type) pair over three sliding windows
(second, minute, hour). Each window has its own hard ceiling of
``limit + burst``; calls between the limit and the ceiling are
burst-tolerated. Declines are returned, never raised.
"""

import asyncio
import math
import statistics
from typing import Dict, Mapping, Optional

from canvas_sync.app.core.config import settings
from canvas_sync.app.core.events import EventBus, Events
from canvas_sync.app.core.logging import get_log_context, get_logger
from canvas_sync.app.core.scheduler import Clock
from canvas_sync.app.exceptions import ValidationError
from canvas_sync.app.services.oracles import AccountAgeOracle
from canvas_sync.app.services.rate_limit.models import (
    DEFAULT_LIMITS,
    WRITE_HEAVY_ACTIONS,
    ActionType,
    Period,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitResult,
    SuspiciousActivityRecord,
)

logger = get_logger(__name__)

BOT_PATTERN = "bot_pattern"
BOT_PATTERN_SCORE = 5


def _coerce_action_type(action_type: ActionType | str) -> ActionType:
    try:
        return ActionType(action_type)
    except ValueError:
        raise ValidationError(
            f"Unknown rate limit action type: {action_type!r}", field="action_type"
        ) from None


class RateLimiter:
    """Per-user, per-action sliding window limiter.

    Usage:
        limiter = RateLimiter(age_oracle=oracle, event_bus=bus)
        limiter.start()  # hourly sweep

        result = await limiter.check("user-1", ActionType.PIXEL_EDIT, amount=12)
        if not result.allowed:
            wait(result.retry_after)

        await limiter.stop()
    """

    def __init__(
        self,
        age_oracle: Optional[AccountAgeOracle] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        limits: Optional[Mapping[ActionType, RateLimitConfig]] = None,
        new_account_factor: Optional[float] = None,
        suspicious_threshold: Optional[int] = None,
        bot_min_samples: Optional[int] = None,
        bot_variance_threshold: Optional[float] = None,
        sweep_interval: Optional[float] = None,
    ):
        """Initialize the limiter.

        Args:
            age_oracle: Answers whether an account is younger than one hour
            event_bus: Receives SUSPICIOUS_ACTIVITY notifications
            clock: Time source (seconds)
            limits: Per-action limits, defaults to DEFAULT_LIMITS
            new_account_factor: Scale applied to limits of new accounts
            suspicious_threshold: Score above which suspicion is published
            bot_min_samples: Entries needed before cadence is inspected
            bot_variance_threshold: Interval variance (s^2) below which cadence is machine-like
            sweep_interval: Seconds between housekeeping sweeps
        """
        self._age_oracle = age_oracle
        self._event_bus = event_bus
        self._clock = clock or Clock()
        self._limits: Dict[ActionType, RateLimitConfig] = dict(limits or DEFAULT_LIMITS)
        self.new_account_factor = (
            new_account_factor if new_account_factor is not None
            else settings.new_account_limit_factor
        )
        self.suspicious_threshold = (
            suspicious_threshold if suspicious_threshold is not None
            else settings.suspicious_score_threshold
        )
        self.bot_min_samples = (
            bot_min_samples if bot_min_samples is not None
            else settings.bot_pattern_min_samples
        )
        self.bot_variance_threshold = (
            bot_variance_threshold if bot_variance_threshold is not None
            else settings.bot_pattern_variance_threshold
        )
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None
            else settings.rate_limit_sweep_interval_seconds
        )

        # user_id -> action type -> record
        self._records: Dict[str, Dict[ActionType, RateLimitRecord]] = {}
        self._suspicious: Dict[str, SuspiciousActivityRecord] = {}

        self._sweep_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep. Requires a running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("RateLimiter started")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        self._stop_event.set()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("RateLimiter stopped")

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                pass
            if not self._stop_event.is_set():
                self.cleanup()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def limits_for(self, action_type: ActionType | str) -> RateLimitConfig:
        return self._limits[_coerce_action_type(action_type)]

    async def _is_new_account(self, user_id: str) -> bool:
        if self._age_oracle is None:
            return False
        try:
            return await self._age_oracle.is_new_account(user_id)
        except Exception as e:
            logger.warning(
                f"Account age lookup failed, treating as established: {e}",
                extra=get_log_context(user_id=user_id),
            )
            return False

    async def effective_limits(
        self, user_id: str, action_type: ActionType | str
    ) -> RateLimitConfig:
        """Limits that apply to ``user_id`` right now."""
        config = self.limits_for(action_type)
        if await self._is_new_account(user_id):
            return config.scaled(self.new_account_factor)
        return config

    async def check(
        self,
        user_id: str,
        action_type: ActionType | str,
        amount: int = 1,
    ) -> RateLimitResult:
        """Check and, when allowed, record a request.

        Args:
            user_id: Acting user (non-empty)
            action_type: One of ActionType
            amount: Units consumed by the call (cells touched for edits)

        Returns:
            RateLimitResult; declines carry retry_after, reason and period

        Raises:
            ValidationError: For an empty user, unknown action or non-positive amount
        """
        if not user_id:
            raise ValidationError("user_id is required for rate limited actions", field="user_id")
        action = _coerce_action_type(action_type)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise ValidationError(f"amount must be a positive integer, got {amount!r}", field="amount")

        config = await self.effective_limits(user_id, action)
        # Nothing below awaits: the record is read, checked and written in one turn
        return self._evaluate(user_id, action, amount, config)

    def _get_record(self, user_id: str, action: ActionType) -> RateLimitRecord:
        user_records = self._records.setdefault(user_id, {})
        record = user_records.get(action)
        if record is None:
            record = RateLimitRecord()
            user_records[action] = record
        return record

    def _evaluate(
        self,
        user_id: str,
        action: ActionType,
        amount: int,
        config: RateLimitConfig,
    ) -> RateLimitResult:
        record = self._get_record(user_id, action)
        now = self._clock.now()
        record.refresh(now)

        for period in Period:
            limit = config.limit_for(period)
            ceiling = config.ceiling_for(period)
            if record.counts[period] + amount <= ceiling:
                continue

            if amount > ceiling:
                # Never passes in this window, however long the caller waits
                retry_after = period.seconds
            else:
                retry_after = self._retry_after(record, period, now)
            self._detect_suspicious_pattern(user_id, action, record)
            logger.info(
                f"Rate limit exceeded: {period.value} limit ({limit})",
                extra=get_log_context(
                    user_id=user_id,
                    action_type=action.value,
                    retry_after=retry_after,
                ),
            )
            return RateLimitResult(
                allowed=False,
                retry_after=retry_after,
                reason=f"Rate limit exceeded: {period.value} limit ({limit})",
                period=period,
                limit=limit,
            )

        record.record(now, amount)
        return RateLimitResult(allowed=True)

    @staticmethod
    def _retry_after(record: RateLimitRecord, period: Period, now: float) -> int:
        """Seconds until the oldest entry in the period's window expires."""
        window = period.seconds
        oldest = record.oldest_in_window(now, period)
        if oldest is None:
            return window
        remaining = window - (now - oldest)
        return min(window, max(1, math.ceil(remaining)))

    # ------------------------------------------------------------------
    # Suspicion
    # ------------------------------------------------------------------

    def _detect_suspicious_pattern(
        self, user_id: str, action: ActionType, record: RateLimitRecord
    ) -> None:
        suspicious = self._suspicious.setdefault(user_id, SuspiciousActivityRecord())
        suspicious.score += 1

        if action in WRITE_HEAVY_ACTIONS and len(record.entries) >= self.bot_min_samples:
            timestamps = record.timestamps
            intervals = [b - a for a, b in zip(timestamps, timestamps[1:])]
            if len(intervals) >= 2 and statistics.pvariance(intervals) < self.bot_variance_threshold:
                suspicious.patterns.add(BOT_PATTERN)
                suspicious.score += BOT_PATTERN_SCORE

        if suspicious.score > self.suspicious_threshold:
            logger.warning(
                f"Suspicious pattern detected for user {user_id}: score={suspicious.score}",
                extra=get_log_context(user_id=user_id, action_type=action.value),
            )
            if self._event_bus is not None:
                self._event_bus.emit(
                    Events.SUSPICIOUS_ACTIVITY,
                    {
                        "userId": user_id,
                        "type": action.value,
                        "score": suspicious.score,
                        "patterns": sorted(suspicious.patterns),
                    },
                )

    def get_suspicion(self, user_id: str) -> Optional[SuspiciousActivityRecord]:
        return self._suspicious.get(user_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reset(self, user_id: str, action_type: ActionType | str | None = None) -> None:
        """Clear limits for a user (manual unblocking).

        With ``action_type`` only that record is cleared; without it every
        record and the suspicion record for the user are dropped.
        """
        if action_type is not None:
            action = _coerce_action_type(action_type)
            user_records = self._records.get(user_id)
            if user_records is not None:
                user_records.pop(action, None)
                if not user_records:
                    del self._records[user_id]
        else:
            self._records.pop(user_id, None)
            self._suspicious.pop(user_id, None)

        logger.info(
            f"Reset limit for user {user_id}, type: {action_type or 'all'}",
            extra=get_log_context(user_id=user_id),
        )

    def cleanup(self) -> int:
        """Remove records that are empty or idle for more than an hour.

        Returns:
            Number of records removed
        """
        now = self._clock.now()
        cleaned = 0
        for user_id in list(self._records):
            user_records = self._records[user_id]
            for action in list(user_records):
                if user_records[action].is_stale(now):
                    del user_records[action]
                    cleaned += 1
            if not user_records:
                del self._records[user_id]

        if cleaned:
            logger.debug(f"Cleaned up {cleaned} old rate limit records")
        return cleaned

    def status(self, user_id: str, action_type: ActionType | str) -> dict:
        """Current counts, configured limits and suspicion for a user."""
        action = _coerce_action_type(action_type)
        record = self._records.get(user_id, {}).get(action)
        if record is not None:
            record.refresh(self._clock.now())
            counts = {period.value: record.counts[period] for period in Period}
        else:
            counts = {period.value: 0 for period in Period}
        config = self._limits[action]
        suspicious = self._suspicious.get(user_id)
        return {
            "counts": counts,
            "limits": {
                "perSecond": config.per_second,
                "perMinute": config.per_minute,
                "perHour": config.per_hour,
                "burst": config.burst,
            },
            "suspicious": suspicious.to_dict() if suspicious else None,
        }

    @property
    def tracked_users(self) -> int:
        return len(self._records)
