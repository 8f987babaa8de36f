"""Canvas synchronization: tiered reads, debounced writes, offline recovery."""

from canvas_sync.app.services.sync.engine import SyncEngine
from canvas_sync.app.services.sync.memory_cache import MemoryCache
from canvas_sync.app.services.sync.merge import apply_delta, coalesce, compose_deltas
from canvas_sync.app.services.sync.models import (
    CacheEntry,
    Cell,
    DeltaPayload,
    EntityPayload,
    Freshness,
    OfflineRecoveryEntry,
    OperatingMode,
    PendingWrite,
    PurgeResult,
    SaveResult,
    changed_cell_count,
    cell_key,
)
from canvas_sync.app.services.sync.recovery import OfflineRecoveryQueue, RecoveryPolicy
from canvas_sync.app.services.sync.schemas import (
    CanvasDocument,
    normalize_payload,
    parse_write_payload,
)
from canvas_sync.app.services.sync.sessions import DraftSessionStore

__all__ = [
    "SyncEngine",
    "MemoryCache",
    "apply_delta",
    "coalesce",
    "compose_deltas",
    "CacheEntry",
    "Cell",
    "DeltaPayload",
    "EntityPayload",
    "Freshness",
    "OfflineRecoveryEntry",
    "OperatingMode",
    "PendingWrite",
    "PurgeResult",
    "SaveResult",
    "changed_cell_count",
    "cell_key",
    "OfflineRecoveryQueue",
    "RecoveryPolicy",
    "CanvasDocument",
    "normalize_payload",
    "parse_write_payload",
    "DraftSessionStore",
]
