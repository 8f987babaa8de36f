"""Delta merging and pending-write coalescing.

All functions return new payloads and leave their inputs untouched.
"""

from typing import Optional

from canvas_sync.app.services.sync.models import (
    DeltaPayload,
    EntityPayload,
    WritePayload,
)


def apply_delta(base: EntityPayload, delta: DeltaPayload) -> EntityPayload:
    """Merge a delta into a full payload.

    Upserts replace the cell at their coordinate, tombstones remove it.
    Applying the same delta twice gives the same result as applying it once.
    """
    elements = dict(base.elements)
    for key, cell in delta.changes.items():
        if cell.is_tombstone:
            elements.pop(key, None)
        else:
            elements[key] = cell
    return EntityPayload(
        entity_id=base.entity_id,
        elements=elements,
        width=base.width,
        height=base.height,
        last_updated=delta.last_updated if delta.last_updated is not None else base.last_updated,
    )


def compose_deltas(first: DeltaPayload, second: DeltaPayload) -> DeltaPayload:
    """Single delta equivalent to applying ``first`` then ``second``."""
    changes = dict(first.changes)
    changes.update(second.changes)
    return DeltaPayload(
        entity_id=first.entity_id,
        changes=changes,
        last_updated=second.last_updated if second.last_updated is not None else first.last_updated,
    )


def coalesce(pending: Optional[WritePayload], incoming: WritePayload) -> WritePayload:
    """Combine an un-flushed payload with a newer one for the same entity.

    A full payload replaces whatever was pending. A delta is composed with
    a pending delta, or applied onto a pending full payload.
    """
    if pending is None or isinstance(incoming, EntityPayload):
        return incoming
    if isinstance(pending, EntityPayload):
        return apply_delta(pending, incoming)
    return compose_deltas(pending, incoming)


def resolve(base: EntityPayload, payload: WritePayload) -> EntityPayload:
    """Full payload to persist for ``payload`` given the last known state."""
    if isinstance(payload, DeltaPayload):
        return apply_delta(base, payload)
    return payload
