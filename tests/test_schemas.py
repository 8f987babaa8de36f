"""Tests for canvas document parsing."""

import pytest

from canvas_sync.app.exceptions import ValidationError
from canvas_sync.app.services.sync import (
    DeltaPayload,
    EntityPayload,
    normalize_payload,
    parse_write_payload,
)
from canvas_sync.app.services.sync.schemas import coerce_write_payload


class TestNormalizePayload:
    """Tests for turning store responses into full payloads."""

    def test_none_is_empty(self):
        payload = normalize_payload("T1", None)

        assert payload.is_empty
        assert payload.count == 0
        assert (payload.width, payload.height) == (64, 64)

    def test_xy_cells(self):
        payload = normalize_payload(
            "T1",
            {
                "territoryId": "T1",
                "pixels": [
                    {"x": 1, "y": 2, "c": "#ff0000", "u": "u1", "t": 1700000000000},
                    {"x": 3, "y": 4, "c": "#00ff00"},
                ],
                "width": 32,
                "height": 32,
                "filledPixels": 2,
                "lastUpdated": "2024-01-01T00:00:00Z",
            },
        )

        assert payload.count == 2
        assert payload.value_at(1, 2) == "#ff0000"
        assert payload.elements["1,2"].updated_by == "u1"
        assert payload.elements["1,2"].updated_at == 1700000000000
        assert payload.width == 32
        assert payload.last_updated == "2024-01-01T00:00:00Z"

    def test_keyed_cells(self):
        payload = normalize_payload("T1", {"pixels": [{"k": "0,0", "v": "red"}]})
        assert payload.value_at(0, 0) == "red"

    def test_mapping_of_cells(self):
        payload = normalize_payload("T1", {"pixels": {"0,0": "red", "1,0": {"c": "blue"}}})

        assert payload.value_at(0, 0) == "red"
        assert payload.value_at(1, 0) == "blue"

    def test_color_alias(self):
        payload = normalize_payload("T1", {"pixels": [{"x": 5, "y": 5, "color": "teal"}]})
        assert payload.value_at(5, 5) == "teal"

    def test_tombstones_dropped_from_full_payload(self):
        payload = normalize_payload("T1", {"pixels": [{"x": 0, "y": 0, "c": None}]})
        assert payload.is_empty

    def test_null_dimensions_fall_back_to_default(self):
        payload = normalize_payload("T1", {"pixels": [], "width": None, "height": None})
        assert (payload.width, payload.height) == (64, 64)

    def test_to_dict_round_trip(self):
        original = normalize_payload("T1", {"pixels": [{"x": 1, "y": 1, "c": "red"}]})

        again = normalize_payload("T1", original.to_dict())

        assert again.elements == original.elements
        assert original.to_dict()["filledPixels"] == 1
        assert original.to_dict()["isDelta"] is False

    @pytest.mark.parametrize(
        "document",
        [
            "not a document",
            ["pixels"],
            {"pixels": "abc"},
            {"pixels": [{"x": -1, "y": 0, "c": "red"}]},
            {"pixels": [{"x": 0, "c": "red"}]},
            {"pixels": [{"k": "nonsense", "v": "red"}]},
            {"pixels": [], "width": 0},
        ],
    )
    def test_malformed_document_raises(self, document):
        with pytest.raises(ValidationError):
            normalize_payload("T1", document)


class TestParseWritePayload:
    """Tests for the full / delta decision at the boundary."""

    def test_delta_flag(self):
        payload = parse_write_payload(
            "T1",
            {"pixels": [{"x": 0, "y": 0, "c": "red"}, {"x": 1, "y": 1, "c": None}], "isDelta": True},
        )

        assert isinstance(payload, DeltaPayload)
        assert payload.count == 2
        assert payload.changes["1,1"].is_tombstone

    def test_full_without_flag(self):
        payload = parse_write_payload("T1", {"pixels": [{"x": 0, "y": 0, "c": "red"}]})

        assert isinstance(payload, EntityPayload)
        assert payload.count == 1

    def test_repeated_cell_last_wins(self):
        payload = parse_write_payload(
            "T1",
            {"pixels": [{"k": "0,0", "v": "red"}, {"k": "0,0", "v": "blue"}], "isDelta": True},
        )
        assert payload.changes["0,0"].value == "blue"

    def test_coerce_accepts_built_payload(self):
        payload = EntityPayload("T1")
        assert coerce_write_payload("T1", payload) is payload

    def test_coerce_rejects_foreign_payload(self):
        with pytest.raises(ValidationError):
            coerce_write_payload("T1", EntityPayload("T2"))
