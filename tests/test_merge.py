"""Tests for delta merging and pending-write coalescing."""

from canvas_sync.app.services.sync import (
    Cell,
    DeltaPayload,
    EntityPayload,
    apply_delta,
    changed_cell_count,
    coalesce,
    compose_deltas,
)
from canvas_sync.app.services.sync.merge import resolve


def full(entity_id="T1", **cells):
    return EntityPayload.from_cells(
        entity_id, [Cell(int(k[1]), int(k[2]), v) for k, v in cells.items()]
    )


def delta(entity_id="T1", *changes):
    return DeltaPayload.from_cells(entity_id, [Cell(x, y, v) for x, y, v in changes])


class TestApplyDelta:
    """Tests for apply_delta."""

    def test_upsert_and_tombstone(self):
        base = full(c00="red", c11="blue")
        change = delta("T1", (0, 0, "green"), (1, 1, None), (2, 2, "white"))

        merged = apply_delta(base, change)

        assert merged.value_at(0, 0) == "green"
        assert merged.value_at(1, 1) is None
        assert merged.value_at(2, 2) == "white"
        assert merged.count == 2

    def test_idempotent(self):
        """Applying the same delta twice equals applying it once."""
        base = full(c00="red", c11="blue")
        change = delta("T1", (0, 0, "green"), (1, 1, None))

        once = apply_delta(base, change)
        twice = apply_delta(once, change)

        assert twice.elements == once.elements

    def test_base_is_not_mutated(self):
        base = full(c00="red")
        apply_delta(base, delta("T1", (0, 0, None)))

        assert base.value_at(0, 0) == "red"

    def test_tombstone_for_missing_cell_is_ignored(self):
        merged = apply_delta(full(c00="red"), delta("T1", (5, 5, None)))
        assert merged.count == 1

    def test_keeps_dimensions(self):
        base = EntityPayload("T1", width=32, height=16)
        merged = apply_delta(base, delta("T1", (1, 1, "red")))
        assert (merged.width, merged.height) == (32, 16)


class TestCoalesce:
    """Tests for combining pending writes."""

    def test_nothing_pending(self):
        incoming = delta("T1", (0, 0, "red"))
        assert coalesce(None, incoming) is incoming

    def test_full_replaces_pending(self):
        incoming = full(c22="black")
        assert coalesce(delta("T1", (0, 0, "red")), incoming) is incoming

    def test_delta_onto_pending_full(self):
        result = coalesce(full(c00="red"), delta("T1", (1, 1, "blue")))

        assert isinstance(result, EntityPayload)
        assert result.value_at(0, 0) == "red"
        assert result.value_at(1, 1) == "blue"

    def test_delta_onto_pending_delta(self):
        """Later changes to the same cell win; tombstones are kept."""
        first = delta("T1", (0, 0, "red"), (1, 1, "blue"))
        second = delta("T1", (0, 0, None), (2, 2, "green"))

        result = coalesce(first, second)

        assert isinstance(result, DeltaPayload)
        assert result.changes["0,0"].is_tombstone
        assert result.changes["1,1"].value == "blue"
        assert result.changes["2,2"].value == "green"

    def test_composed_delta_matches_sequential_application(self):
        base = full(c00="red", c33="grey")
        first = delta("T1", (0, 0, "green"), (1, 1, "blue"))
        second = delta("T1", (1, 1, None), (3, 3, "pink"))

        sequential = apply_delta(apply_delta(base, first), second)
        composed = apply_delta(base, compose_deltas(first, second))

        assert composed.elements == sequential.elements


class TestResolve:
    def test_full_payload_used_as_is(self):
        payload = full(c00="red")
        assert resolve(full(c11="blue"), payload) is payload

    def test_delta_merged_onto_base(self):
        result = resolve(full(c11="blue"), delta("T1", (0, 0, "red")))
        assert result.count == 2


class TestChangedCellCount:
    """Rate limit amount charged for a write."""

    def test_delta_counts_its_cells(self):
        assert changed_cell_count(delta("T1", (0, 0, "red"), (1, 1, None))) == 2

    def test_full_without_base_counts_every_cell(self):
        assert changed_cell_count(full(c00="red", c11="blue", c22="gold")) == 3

    def test_full_counts_upserts_and_removals(self):
        base = full(c00="red", c11="blue", c22="gold")
        payload = full(c00="red", c11="green", c33="pink")

        # (1,1) recoloured, (3,3) added, (2,2) removed
        assert changed_cell_count(payload, base) == 3

    def test_unchanged_snapshot_costs_one(self):
        base = full(c00="red", c11="blue")
        assert changed_cell_count(full(c00="red", c11="blue"), base) == 1
