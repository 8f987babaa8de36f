"""Resilient canvas synchronization engine.

Read path: ownership gate, then the in-memory tier (stale-while-revalidate),
the persistent tier and finally the remote store.

Write path: rate limit check, debounce coalescing per entity, delta merge
against the last known state, remote write, and a bounded offline
recovery queue for writes that fail with a network error.
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Tuple

from canvas_sync.app.core.cache import PersistentStore
from canvas_sync.app.core.config import settings
from canvas_sync.app.core.events import EventBus, Events
from canvas_sync.app.core.logging import get_log_context, get_logger
from canvas_sync.app.core.scheduler import Clock, Scheduler
from canvas_sync.app.exceptions import (
    CanvasSyncException,
    NetworkUnavailableError,
    RetryBudgetExhaustedError,
    TransportStatusError,
    ValidationError,
    is_network_error,
)
from canvas_sync.app.services.oracles import OwnerState, OwnershipOracle, OwnershipRegistry
from canvas_sync.app.services.rate_limit import ActionType, RateLimiter
from canvas_sync.app.services.sync.memory_cache import MemoryCache
from canvas_sync.app.services.sync.merge import apply_delta, coalesce, resolve
from canvas_sync.app.services.sync.models import (
    DeltaPayload,
    EntityPayload,
    Freshness,
    OperatingMode,
    PendingWrite,
    PurgeResult,
    SaveResult,
    WritePayload,
    changed_cell_count,
)
from canvas_sync.app.services.sync.recovery import OfflineRecoveryQueue, RecoveryPolicy
from canvas_sync.app.services.sync.schemas import coerce_write_payload, normalize_payload
from canvas_sync.app.services.sync.sessions import DraftSessionStore

logger = get_logger(__name__)


def default_debounce_delays() -> Dict[OperatingMode, float]:
    return {
        OperatingMode.NORMAL: settings.save_debounce_normal_seconds,
        OperatingMode.BUSY: settings.save_debounce_busy_seconds,
        OperatingMode.EMERGENCY: settings.save_debounce_emergency_seconds,
    }


class SyncEngine:
    """Loads and saves territory canvases through a tiered cache.

    Usage:
        engine = SyncEngine(transport, store, rate_limiter=limiter, event_bus=bus)

        canvas = await engine.load("T1")
        result = await engine.save("T1", {"pixels": [...], "isDelta": True}, user_id="u1")

        await engine.set_network_status(True)  # drives offline recovery
        await engine.close()                   # flushes pending writes
    """

    def __init__(
        self,
        transport,
        store: PersistentStore,
        rate_limiter: Optional[RateLimiter] = None,
        event_bus: Optional[EventBus] = None,
        ownership_oracle: Optional[OwnershipOracle] = None,
        ownership_registry: Optional[OwnershipRegistry] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Clock] = None,
        memory_ttl: Optional[float] = None,
        debounce_delays: Optional[Mapping[OperatingMode, float]] = None,
        recovery_policy: Optional[RecoveryPolicy] = None,
        key_prefix: Optional[str] = None,
        mode: OperatingMode = OperatingMode.NORMAL,
    ):
        """Initialize the engine.

        Args:
            transport: Remote store client (see services.transport.Transport)
            store: Persistent tier
            rate_limiter: Checked before accepting writes that name a user
            event_bus: Receives save, delete and recovery notifications
            ownership_oracle: Resolves owners unknown to the registry
            ownership_registry: In-process owner table consulted first
            scheduler: Debounce timers and background work
            clock: Time source (seconds)
            memory_ttl: Fresh lifetime of in-memory entries
            debounce_delays: Debounce delay per operating mode
            recovery_policy: Offline retry budget and spacing
            key_prefix: Namespace for persistent keys
            mode: Initial operating mode
        """
        self._transport = transport
        self._store = store
        self._rate_limiter = rate_limiter
        self._event_bus = event_bus or EventBus()
        self._ownership_oracle = ownership_oracle
        self._registry = ownership_registry
        self._scheduler = scheduler or Scheduler()
        self._clock = clock or Clock()
        self._key_prefix = key_prefix or settings.store_key_prefix
        self._memory = MemoryCache(
            ttl=memory_ttl if memory_ttl is not None else settings.memory_cache_ttl_seconds,
            clock=self._clock,
        )
        self._debounce_delays = dict(debounce_delays or default_debounce_delays())
        self.recovery_policy = recovery_policy or RecoveryPolicy(
            max_retries=settings.recovery_max_retries,
            min_interval=settings.recovery_min_interval_seconds,
        )
        self.sessions = DraftSessionStore(store, self._key_prefix, clock=self._clock)
        self._mode = OperatingMode(mode)

        self._pending: Dict[str, PendingWrite] = {}
        self._deferred: Dict[str, WritePayload] = {}
        self._recovery = OfflineRecoveryQueue()
        self._revalidating: Dict[str, asyncio.Task] = {}
        # Bumped by delete_payload; fetches started under an older value are discarded
        self._generations: Dict[str, int] = {}
        # Flush locks serialize writes; loading locks collapse concurrent fetches
        self._flush_locks: Dict[str, asyncio.Lock] = {}
        self._loading_locks: Dict[str, asyncio.Lock] = {}
        self._recovery_lock = asyncio.Lock()
        self._online = True

    # ------------------------------------------------------------------
    # Keys and state
    # ------------------------------------------------------------------

    @staticmethod
    def payload_path(entity_id: str) -> str:
        return f"/territories/{entity_id}/pixels"

    def store_key(self, entity_id: str) -> str:
        return f"{self._key_prefix}:canvas:{entity_id}"

    @property
    def mode(self) -> OperatingMode:
        return self._mode

    @property
    def online(self) -> bool:
        return self._online

    @property
    def debounce_delay(self) -> Optional[float]:
        """Delay for the current mode; None in read-only mode."""
        return self._debounce_delays.get(self._mode)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def memory(self) -> MemoryCache:
        return self._memory

    @property
    def recovery_queue(self) -> OfflineRecoveryQueue:
        return self._recovery

    def has_pending_write(self, entity_id: str) -> bool:
        return entity_id in self._pending

    def deferred_payload(self, entity_id: str) -> Optional[WritePayload]:
        return self._deferred.get(entity_id)

    def set_mode(self, mode: OperatingMode | str) -> None:
        """Switch operating mode; applies to timers armed from now on."""
        new_mode = OperatingMode(mode)
        if new_mode is self._mode:
            return
        logger.info(
            f"Operating mode changed: {self._mode.value} -> {new_mode.value}",
            extra=get_log_context(mode=new_mode.value),
        )
        self._mode = new_mode

    def _flush_lock(self, entity_id: str) -> asyncio.Lock:
        return self._flush_locks.setdefault(entity_id, asyncio.Lock())

    @staticmethod
    def _require_entity_id(entity_id: str) -> None:
        if not entity_id or not isinstance(entity_id, str):
            raise ValidationError("entity_id is required", field="entity_id")

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def _resolve_owner(
        self, entity_id: str, owner_state: Optional[OwnerState]
    ) -> Optional[OwnerState]:
        """Supplied state, then the registry, then the oracle.

        Returns None when ownership cannot be determined.
        """
        if owner_state is not None:
            return owner_state
        if self._registry is not None:
            known = self._registry.get(entity_id)
            if known is not None:
                return known
        if self._ownership_oracle is None:
            return None
        try:
            return await self._ownership_oracle.resolve(entity_id)
        except CanvasSyncException as e:
            if not is_network_error(e):
                raise
            logger.warning(
                f"Ownership lookup failed, proceeding without it: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return None

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def load(
        self,
        entity_id: str,
        owner_state: Optional[OwnerState] = None,
        force_refresh: bool = False,
    ) -> EntityPayload:
        """Load the canvas of a territory.

        Unclaimed territories short-circuit to an empty payload without
        touching any cache tier or the remote store. When the store cannot
        answer, the last locally saved canvas (or an empty one) is served.
        """
        self._require_entity_id(entity_id)
        owner = await self._resolve_owner(entity_id, owner_state)
        if owner is not None and not owner.is_claimed:
            logger.debug("Territory has no owner", extra=get_log_context(entity_id=entity_id))
            return EntityPayload.empty(entity_id)
        return await self._load_unchecked(entity_id, force_refresh=force_refresh)

    async def has_payload(self, entity_id: str, owner_state: Optional[OwnerState] = None) -> bool:
        payload = await self.load(entity_id, owner_state=owner_state)
        return payload.count > 0

    async def _load_unchecked(self, entity_id: str, force_refresh: bool = False) -> EntityPayload:
        fallback = None
        if not force_refresh:
            entry, freshness = self._memory.lookup(entity_id)
            if entry is not None:
                if freshness is Freshness.STALE:
                    self._revalidate_in_background(entity_id)
                return entry.payload
            # Expired entries go straight to the network
            if freshness is not Freshness.EXPIRED:
                persisted, needs_revalidation = await self._read_persistent(entity_id)
                if persisted is not None and not needs_revalidation:
                    self._memory.put(entity_id, persisted)
                    return persisted
                # Our own last write is only served when the store cannot answer
                fallback = persisted

        lock = self._loading_locks.setdefault(entity_id, asyncio.Lock())
        async with lock:
            if not force_refresh:
                # Another loader may have fetched while we waited
                entry, _ = self._memory.lookup(entity_id)
                if entry is not None:
                    return entry.payload

            generation = self._generation(entity_id)
            fetched = await self._fetch_remote(entity_id)
            if fetched is None:
                placeholder = fallback if fallback is not None else EntityPayload.empty(entity_id)
                queued = self._recovery.get(entity_id)
                if queued is not None:
                    placeholder = resolve(placeholder, queued.payload)
                # Memory only, so an offline copy in the persistent tier survives
                if self._generation(entity_id) == generation:
                    self._memory.put(entity_id, placeholder, trusted=False)
                return placeholder
            return await self._store_fetched(entity_id, fetched, generation)

    async def _read_persistent(self, entity_id: str) -> Tuple[Optional[EntityPayload], bool]:
        """Persistent copy and whether it must be reconciled with the store first."""
        try:
            record = await self._store.get(self.store_key(entity_id))
        except Exception as e:
            logger.warning(
                f"Persistent tier read failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return None, False
        if not record or "payload" not in record:
            return None, False
        try:
            payload = normalize_payload(entity_id, record["payload"])
        except ValidationError as e:
            logger.warning(
                f"Discarding malformed persistent record: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return None, False
        return payload, bool(record.get("revalidate")) and not record.get("offline")

    async def _fetch_remote(self, entity_id: str) -> Optional[EntityPayload]:
        """Fetch and normalize; None when the store could not answer."""
        try:
            data = await self._transport.get(self.payload_path(entity_id))
            return normalize_payload(entity_id, data)
        except TransportStatusError as e:
            if e.status_code == 404:
                return EntityPayload.empty(entity_id)
            logger.warning(
                f"Canvas fetch failed with HTTP {e.status_code}",
                extra=get_log_context(entity_id=entity_id),
            )
            return None
        except CanvasSyncException as e:
            logger.warning(
                f"Canvas fetch failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return None

    def _generation(self, entity_id: str) -> int:
        return self._generations.get(entity_id, 0)

    async def _store_fetched(
        self, entity_id: str, payload: EntityPayload, generation: int
    ) -> EntityPayload:
        if self._generation(entity_id) != generation:
            logger.debug(
                "Discarding fetch that started before the canvas was deleted",
                extra=get_log_context(entity_id=entity_id),
            )
            return EntityPayload.empty(entity_id)

        queued = self._recovery.get(entity_id)
        if queued is not None:
            # An unsent local write is newer than anything the store has
            view = resolve(payload, queued.payload)
            self._memory.put(entity_id, view)
            return view

        self._memory.put(entity_id, payload)
        if payload.is_empty:
            return payload
        try:
            existing = await self._store.get(self.store_key(entity_id))
        except Exception as e:
            logger.warning(
                f"Persistent tier read failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return payload
        if existing and existing.get("offline"):
            return payload
        await self._persist(entity_id, payload, offline=False)
        return payload

    def _revalidate_in_background(self, entity_id: str) -> None:
        if entity_id in self._revalidating:
            return
        task = self._scheduler.spawn(self._revalidate(entity_id), name=f"revalidate:{entity_id}")
        self._revalidating[entity_id] = task
        task.add_done_callback(lambda t: self._forget_revalidation(entity_id, t))

    def _forget_revalidation(self, entity_id: str, task: asyncio.Task) -> None:
        if self._revalidating.get(entity_id) is task:
            del self._revalidating[entity_id]

    async def _revalidate(self, entity_id: str) -> None:
        generation = self._generation(entity_id)
        fetched = await self._fetch_remote(entity_id)
        if fetched is None:
            # Keep serving the stale entry
            return
        await self._store_fetched(entity_id, fetched, generation)
        logger.debug("Revalidated canvas", extra=get_log_context(entity_id=entity_id))

    async def _persist(
        self, entity_id: str, payload: EntityPayload, offline: bool, revalidate: bool = False
    ) -> bool:
        record = {
            "payload": payload.to_dict(),
            "cached_at": self._clock.now(),
            "offline": offline,
            "revalidate": revalidate,
        }
        try:
            await self._store.put(self.store_key(entity_id), record)
            return True
        except Exception as e:
            logger.warning(
                f"Persistent tier write failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            return False

    def clear_cache(self, entity_id: Optional[str] = None) -> int:
        """Drop in-memory entries (one entity, or all of them)."""
        if entity_id is not None:
            return int(self._memory.invalidate(entity_id))
        return self._memory.clear()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def save(
        self,
        entity_id: str,
        payload: Any,
        user_id: Optional[str] = None,
    ) -> SaveResult:
        """Accept a write and flush it after the mode's debounce delay.

        With ``user_id`` the write is checked against ownership and the
        cell edit rate limit first. Rate-limited payloads are parked and
        can be replayed with ``resubmit_deferred``.

        Raises:
            ValidationError: Malformed payload or entity id
        """
        self._require_entity_id(entity_id)
        write = coerce_write_payload(entity_id, payload)

        if self._mode is OperatingMode.READ_ONLY:
            logger.info("Save rejected in read-only mode", extra=get_log_context(entity_id=entity_id))
            return SaveResult.declined("read_only")

        if user_id is not None:
            owner = await self._resolve_owner(entity_id, None)
            if owner is not None and owner.owner_id != user_id:
                logger.info(
                    "Save rejected: user does not own the territory",
                    extra=get_log_context(user_id=user_id, entity_id=entity_id),
                )
                return SaveResult.declined("not_owner")

            if self._rate_limiter is not None:
                base = None if isinstance(write, DeltaPayload) else await self._last_known(entity_id)
                result = await self._rate_limiter.check(
                    user_id, ActionType.PIXEL_EDIT, changed_cell_count(write, base)
                )
                if not result.allowed:
                    self._deferred[entity_id] = coalesce(self._deferred.get(entity_id), write)
                    return SaveResult.declined(result.reason, retry_after=result.retry_after)

        self._schedule(entity_id, write)
        return SaveResult(success=True, scheduled=True)

    async def resubmit_deferred(self, entity_id: str, user_id: str) -> SaveResult:
        """Replay the payload parked by a rate-limited save."""
        write = self._deferred.pop(entity_id, None)
        if write is None:
            return SaveResult.declined("nothing_deferred")
        return await self.save(entity_id, write, user_id=user_id)

    async def _last_known(self, entity_id: str) -> Optional[EntityPayload]:
        """Newest full state known locally, without touching the network."""
        pending = self._pending.get(entity_id)
        if pending is not None and isinstance(pending.payload, EntityPayload):
            return pending.payload
        queued = self._recovery.get(entity_id)
        if queued is not None and isinstance(queued.payload, EntityPayload):
            return queued.payload
        entry, _ = self._memory.lookup(entity_id)
        if entry is not None and entry.trusted:
            return entry.payload
        persisted, _ = await self._read_persistent(entity_id)
        return persisted

    def _schedule(self, entity_id: str, write: WritePayload) -> None:
        pending = self._pending.get(entity_id)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        merged = coalesce(pending.payload if pending else None, write)

        delay = self.debounce_delay or 0.0
        timer = self._scheduler.schedule_after(
            delay, lambda: self._flush_pending(entity_id), name=f"flush:{entity_id}"
        )
        self._pending[entity_id] = PendingWrite(payload=merged, timer=timer, queued_at=self._clock.now())
        logger.debug(
            f"Write scheduled in {delay}s",
            extra=get_log_context(entity_id=entity_id, mode=self._mode.value),
        )

    async def _flush_pending(self, entity_id: str) -> None:
        pending = self._pending.pop(entity_id, None)
        if pending is None:
            return
        if pending.timer is not None:
            pending.timer.cancel()
        try:
            await self._flush(entity_id, pending.payload)
        except Exception as e:
            logger.error(
                f"Debounced save failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
            self._event_bus.emit(
                Events.SAVE_FAILED,
                {"territoryId": entity_id, "error": e},
            )

    async def save_immediate(self, entity_id: str, payload: Any) -> SaveResult:
        """Flush now, absorbing any pending debounced write for the entity.

        Raises:
            ValidationError: Malformed payload or rejected by the remote store
            TransportStatusError: Non-network HTTP failure
        """
        self._require_entity_id(entity_id)
        write = coerce_write_payload(entity_id, payload)
        if self._mode is OperatingMode.READ_ONLY:
            return SaveResult.declined("read_only")

        pending = self._pending.pop(entity_id, None)
        if pending is not None:
            if pending.timer is not None:
                pending.timer.cancel()
            write = coalesce(pending.payload, write)
        return await self._flush(entity_id, write)

    async def save_many(self, payloads: Mapping[str, Any]) -> Dict[str, SaveResult]:
        """Flush several territories at once.

        Failures are reported per territory.
        """
        entity_ids = list(payloads)
        outcomes = await asyncio.gather(
            *(self.save_immediate(entity_id, payloads[entity_id]) for entity_id in entity_ids),
            return_exceptions=True,
        )
        results: Dict[str, SaveResult] = {}
        for entity_id, outcome in zip(entity_ids, outcomes):
            if isinstance(outcome, CanvasSyncException):
                logger.warning(
                    f"Batch save failed: {outcome}",
                    extra=get_log_context(entity_id=entity_id),
                )
                results[entity_id] = SaveResult.declined(outcome.code)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[entity_id] = outcome
        return results

    async def _merge_base(self, entity_id: str) -> Optional[EntityPayload]:
        """Trusted current state to merge a delta into; None when unknown."""
        entry, _ = self._memory.lookup(entity_id)
        if entry is not None and entry.trusted:
            return entry.payload
        generation = self._generation(entity_id)
        fetched = await self._fetch_remote(entity_id)
        if fetched is None:
            return None
        return await self._store_fetched(entity_id, fetched, generation)

    def _stamp(self, payload: EntityPayload) -> EntityPayload:
        return replace(payload, last_updated=int(self._clock.now() * 1000))

    async def _flush(self, entity_id: str, write: WritePayload) -> SaveResult:
        async with self._flush_lock(entity_id):
            queued = self._recovery.get(entity_id)
            if queued is not None:
                write = coalesce(queued.payload, write)

            if isinstance(write, DeltaPayload):
                base = await self._merge_base(entity_id)
                if base is None:
                    await self._queue_offline(
                        entity_id, write, NetworkUnavailableError("No canvas to merge the delta into")
                    )
                    return SaveResult(success=True, queued_offline=True)
                write = resolve(base, write)

            merged = self._stamp(write)
            try:
                await self._transport.post(self.payload_path(entity_id), merged.to_dict())
            except Exception as e:
                if not is_network_error(e):
                    raise
                await self._queue_offline(entity_id, merged, e)
                return SaveResult(success=True, queued_offline=True)

            await self._on_persisted(entity_id, merged)
            return SaveResult(success=True)

    async def _queue_offline(self, entity_id: str, write: WritePayload, error: Exception) -> None:
        self._memory.invalidate(entity_id)
        if isinstance(write, EntityPayload):
            await self._persist(entity_id, write, offline=True)
            details = {"territoryId": entity_id, "filledPixels": write.count}
        else:
            details = {"territoryId": entity_id, "changedPixels": write.count}
        self._recovery.enqueue(entity_id, write, self._clock.now())
        logger.warning(
            f"Save failed with a network error, queued for recovery: {error}",
            extra=get_log_context(entity_id=entity_id),
        )
        self._event_bus.emit(Events.PAYLOAD_QUEUED_OFFLINE, details)

    async def _on_persisted(self, entity_id: str, merged: EntityPayload) -> None:
        self._memory.invalidate(entity_id)
        self._recovery.remove(entity_id)
        # The store may enrich what we sent, so the next load reads it back
        await self._persist(entity_id, merged, offline=False, revalidate=True)
        try:
            await self.sessions.clear(entity_id)
        except Exception as e:
            logger.warning(
                f"Failed to clear draft session: {e}",
                extra=get_log_context(entity_id=entity_id),
            )
        logger.info(
            f"Saved canvas ({merged.count} cells)",
            extra=get_log_context(entity_id=entity_id, mode=self._mode.value),
        )
        await self._update_metadata(entity_id, merged)
        self._event_bus.emit(
            Events.PAYLOAD_SAVED,
            {"territoryId": entity_id, "filledPixels": merged.count},
        )

    @staticmethod
    def territory_path(entity_id: str) -> str:
        return f"/territories/{entity_id}"

    async def _update_metadata(self, entity_id: str, merged: EntityPayload) -> None:
        """Mirror the canvas summary onto the territory document.

        Failures are logged; the canvas itself is already saved.
        """
        summary = {
            "pixelCanvas": {
                "width": merged.width,
                "height": merged.height,
                "filledPixels": merged.count,
                "lastUpdated": merged.last_updated,
            }
        }
        try:
            await self._transport.patch(self.territory_path(entity_id), summary)
        except CanvasSyncException as e:
            logger.warning(
                f"Territory metadata update failed: {type(e).__name__}: {e}",
                extra=get_log_context(entity_id=entity_id),
            )

    # ------------------------------------------------------------------
    # Offline recovery
    # ------------------------------------------------------------------

    async def set_network_status(self, online: bool) -> None:
        """Record connectivity; an offline -> online transition runs recovery."""
        was_online = self._online
        self._online = online
        self._transport.set_offline(not online)
        if was_online == online:
            return
        logger.info(f"Network is {'online' if online else 'offline'}")
        self._event_bus.emit(Events.NETWORK_STATUS_CHANGED, {"online": online})
        if online:
            await self.recover()

    async def recover(self) -> Dict[str, int]:
        """Retry every queued write whose spacing and budget allow it.

        Returns:
            Counts of succeeded, failed and abandoned entries plus what remains
        """
        summary = {"succeeded": 0, "failed": 0, "gave_up": 0}
        async with self._recovery_lock:
            now = self._clock.now()
            for entry in self._recovery.entries():
                if not self._online:
                    break
                if not self.recovery_policy.is_due(entry, now):
                    continue
                async with self._flush_lock(entry.entity_id):
                    # A flush may have replaced or cleared the entry meanwhile
                    if self._recovery.get(entry.entity_id) is not entry:
                        continue
                    entry.retry_count += 1
                    entry.last_attempt = now
                    outcome = await self._attempt_recovery(entry)
                summary[outcome] += 1
        summary["remaining"] = len(self._recovery)
        return summary

    async def _attempt_recovery(self, entry) -> str:
        entity_id = entry.entity_id
        context = get_log_context(entity_id=entity_id, attempt=entry.retry_count)
        try:
            payload = await self._recovery_payload(entry)
            await self._transport.post(self.payload_path(entity_id), payload.to_dict())
        except Exception as e:
            if self.recovery_policy.is_retryable(e) and not self.recovery_policy.is_exhausted(entry):
                logger.warning(
                    f"Recovery attempt {entry.retry_count}/{self.recovery_policy.max_retries} failed: {e}",
                    extra=context,
                )
                return "failed"
            if not isinstance(e, CanvasSyncException):
                raise
            self._give_up(entry, e)
            return "gave_up"

        await self._on_persisted(entity_id, payload)
        logger.info(f"Recovered offline save after {entry.retry_count} attempt(s)", extra=context)
        self._event_bus.emit(
            Events.RECOVERY_SUCCEEDED,
            {"territoryId": entity_id, "attempts": entry.retry_count},
        )
        return "succeeded"

    async def _recovery_payload(self, entry) -> EntityPayload:
        """Full payload to resend; a queued delta is merged into the remote canvas first."""
        if isinstance(entry.payload, EntityPayload):
            return self._stamp(entry.payload)
        base = await self._fetch_remote(entry.entity_id)
        if base is None:
            raise NetworkUnavailableError("Canvas unavailable to merge the queued delta")
        return self._stamp(apply_delta(base, entry.payload))

    def _give_up(self, entry, error: Exception) -> None:
        self._recovery.remove(entry.entity_id)
        exhausted = RetryBudgetExhaustedError(entry.entity_id, entry.retry_count)
        logger.error(
            f"{exhausted.message}: {error}",
            extra=get_log_context(entity_id=entry.entity_id, attempt=entry.retry_count),
        )
        self._event_bus.emit(
            Events.RECOVERY_GAVE_UP,
            {
                "territoryId": entry.entity_id,
                "attempts": entry.retry_count,
                "error": exhausted,
                "cause": error,
            },
        )

    # ------------------------------------------------------------------
    # Deletion and lifecycle
    # ------------------------------------------------------------------

    async def delete_payload(self, entity_id: str) -> PurgeResult:
        """Remove a canvas from the remote store and both cache tiers.

        Each tier is attempted independently; pending, deferred and
        queued writes for the territory are dropped first.
        """
        self._require_entity_id(entity_id)
        self._generations[entity_id] = self._generation(entity_id) + 1
        revalidation = self._revalidating.pop(entity_id, None)
        if revalidation is not None:
            revalidation.cancel()
        pending = self._pending.pop(entity_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        self._deferred.pop(entity_id, None)

        result = PurgeResult(entity_id=entity_id)
        context = get_log_context(entity_id=entity_id)
        async with self._flush_lock(entity_id):
            self._recovery.remove(entity_id)

            try:
                await self._transport.delete(self.payload_path(entity_id))
                result.network = True
            except TransportStatusError as e:
                result.network = e.status_code == 404
                if not result.network:
                    logger.warning(f"Remote delete failed with HTTP {e.status_code}", extra=context)
            except CanvasSyncException as e:
                logger.warning(f"Remote delete failed: {type(e).__name__}: {e}", extra=context)

            try:
                await self._store.delete(self.store_key(entity_id))
                await self.sessions.clear(entity_id)
                result.persistent = True
            except Exception as e:
                logger.warning(f"Persistent delete failed: {type(e).__name__}: {e}", extra=context)

            self._memory.invalidate(entity_id)
            result.memory = True

        logger.info(
            f"Deleted canvas (network={result.network}, persistent={result.persistent})",
            extra=context,
        )
        self._event_bus.emit(
            Events.PAYLOAD_DELETED,
            {
                "territoryId": entity_id,
                "network": result.network,
                "persistent": result.persistent,
                "memory": result.memory,
            },
        )
        return result

    async def flush_all(self) -> None:
        """Flush every pending debounced write now."""
        for entity_id in list(self._pending):
            await self._flush_pending(entity_id)

    async def close(self) -> None:
        """Flush pending writes and wait for background work."""
        pending_count = len(self._pending)
        await self.flush_all()
        await self._scheduler.drain()
        logger.info(f"SyncEngine closed (flushed {pending_count} pending writes)")
