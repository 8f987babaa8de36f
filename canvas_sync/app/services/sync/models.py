"""Data models for the canvas synchronization engine."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union

DEFAULT_WIDTH = 64
DEFAULT_HEIGHT = 64


def cell_key(x: int, y: int) -> str:
    return f"{x},{y}"


def split_key(key: str) -> tuple[int, int]:
    x, y = key.split(",", 1)
    return int(x), int(y)


@dataclass
class Cell:
    """One addressable cell.

    Attributes:
        x: Column
        y: Row
        value: Colour (or any JSON value); None marks a tombstone in deltas
        updated_by: Last editor, if known
        updated_at: Last-modified marker (epoch milliseconds)
    """
    x: int
    y: int
    value: Any
    updated_by: Optional[str] = None
    updated_at: Optional[int] = None

    @property
    def key(self) -> str:
        return cell_key(self.x, self.y)

    @property
    def is_tombstone(self) -> bool:
        return self.value is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"x": self.x, "y": self.y, "c": self.value}
        if self.updated_by is not None:
            data["u"] = self.updated_by
        if self.updated_at is not None:
            data["t"] = self.updated_at
        return data


@dataclass
class EntityPayload:
    """Full canvas state of one territory.

    ``elements`` is keyed by ``"x,y"`` so that merges are index lookups.
    Tombstones never live in a full payload.
    """
    entity_id: str
    elements: Dict[str, Cell] = field(default_factory=dict)
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    last_updated: Optional[Union[int, str]] = None

    @property
    def count(self) -> int:
        return len(self.elements)

    @property
    def is_empty(self) -> bool:
        return not self.elements

    @classmethod
    def empty(cls, entity_id: str) -> "EntityPayload":
        return cls(entity_id=entity_id)

    @classmethod
    def from_cells(
        cls,
        entity_id: str,
        cells: Iterable[Cell],
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        last_updated: Optional[Union[int, str]] = None,
    ) -> "EntityPayload":
        elements = {cell.key: cell for cell in cells if not cell.is_tombstone}
        return cls(
            entity_id=entity_id,
            elements=elements,
            width=width,
            height=height,
            last_updated=last_updated,
        )

    def value_at(self, x: int, y: int) -> Any:
        cell = self.elements.get(cell_key(x, y))
        return cell.value if cell else None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (see schemas.CanvasDocument)."""
        return {
            "territoryId": self.entity_id,
            "pixels": [cell.to_dict() for cell in self.elements.values()],
            "filledPixels": self.count,
            "width": self.width,
            "height": self.height,
            "lastUpdated": self.last_updated,
            "isDelta": False,
        }


@dataclass
class DeltaPayload:
    """Changed cells only: upserts and tombstones (value None)."""
    entity_id: str
    changes: Dict[str, Cell] = field(default_factory=dict)
    last_updated: Optional[Union[int, str]] = None

    @property
    def count(self) -> int:
        return len(self.changes)

    @classmethod
    def from_cells(
        cls, entity_id: str, cells: Iterable[Cell], last_updated: Optional[Union[int, str]] = None
    ) -> "DeltaPayload":
        # Later cells for the same coordinate win
        return cls(
            entity_id=entity_id,
            changes={cell.key: cell for cell in cells},
            last_updated=last_updated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "territoryId": self.entity_id,
            "pixels": [cell.to_dict() for cell in self.changes.values()],
            "lastUpdated": self.last_updated,
            "isDelta": True,
        }


WritePayload = Union[EntityPayload, DeltaPayload]


def changed_cell_count(payload: WritePayload, base: Optional[EntityPayload] = None) -> int:
    """Rate limit amount of a write: cells touched, minimum 1.

    A delta touches its own cells. A full payload touches the cells that
    differ from ``base`` (upserts plus removals), or all of its cells when
    no previous state is known.
    """
    if isinstance(payload, DeltaPayload) or base is None:
        return max(1, payload.count)
    changed = sum(
        1 for key, cell in payload.elements.items()
        if key not in base.elements or base.elements[key].value != cell.value
    )
    removed = sum(1 for key in base.elements if key not in payload.elements)
    return max(1, changed + removed)


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CacheEntry:
    """In-memory tier entry.

    ``trusted`` is False for placeholders cached after a failed read; those
    are served to readers but never used as the base of a delta merge.
    """
    payload: EntityPayload
    written_at: float
    trusted: bool = True

    def freshness(self, now: float, ttl: float) -> Freshness:
        age = now - self.written_at
        if age < ttl:
            return Freshness.FRESH
        if age < 2 * ttl:
            return Freshness.STALE
        return Freshness.EXPIRED


@dataclass
class PendingWrite:
    """Latest un-flushed payload for an entity plus its debounce timer."""
    payload: WritePayload
    timer: Any = None  # ScheduledTask
    queued_at: float = field(default_factory=time.time)


@dataclass
class OfflineRecoveryEntry:
    """A write that failed to reach the remote store.

    Usually a merged full payload. A delta is queued as-is when no base was
    available to merge it into, and is merged at recovery time.
    """
    entity_id: str
    payload: WritePayload
    retry_count: int = 0
    last_attempt: float = 0.0


class OperatingMode(str, Enum):
    """Service modes; each selects a debounce delay."""

    NORMAL = "normal"
    BUSY = "busy"
    EMERGENCY = "emergency"
    READ_ONLY = "read_only"


@dataclass
class SaveResult:
    """Outcome of a save.

    ``success`` means the write was accepted: flushed, scheduled or
    queued for offline recovery.
    """
    success: bool
    rate_limited: bool = False
    retry_after: Optional[int] = None
    reason: Optional[str] = None
    queued_offline: bool = False
    scheduled: bool = False

    @classmethod
    def declined(cls, reason: str, retry_after: Optional[int] = None) -> "SaveResult":
        return cls(
            success=False,
            rate_limited=retry_after is not None,
            retry_after=retry_after,
            reason=reason,
        )


@dataclass
class PurgeResult:
    """Per-tier outcome of ``delete_payload``."""
    entity_id: str
    network: bool = False
    persistent: bool = False
    memory: bool = False

    @property
    def complete(self) -> bool:
        return self.network and self.persistent and self.memory
