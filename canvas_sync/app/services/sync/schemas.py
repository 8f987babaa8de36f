"""Wire schemas for the canvas document.

The remote store speaks ``{"territoryId", "pixels", "filledPixels",
"width", "height", "lastUpdated", "isDelta"}``. Cells arrive either as
``{"x", "y", "c", "u", "t"}`` or as ``{"k": "x,y", "v": value}``; the
``pixels`` field may also be a ``{"x,y": value}`` mapping.
"""

from typing import Any, List, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from canvas_sync.app.exceptions import ValidationError
from canvas_sync.app.services.sync.models import (
    DEFAULT_HEIGHT,
    DEFAULT_WIDTH,
    Cell,
    DeltaPayload,
    EntityPayload,
    WritePayload,
    split_key,
)


class CellSchema(BaseModel):
    """One cell on the wire."""

    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    c: Any = None
    u: Optional[str] = None
    t: Optional[int] = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def expand_keyed_form(cls, data: Any) -> Any:
        """Accept ``{"k": "x,y", "v": value}`` and ``color`` as alternative spellings."""
        if isinstance(data, dict) and "color" in data and "c" not in data:
            data = {**data, "c": data["color"]}
        if isinstance(data, dict) and "k" in data and "x" not in data:
            try:
                x, y = split_key(str(data["k"]))
            except ValueError as e:
                raise ValueError(f"cell key must look like 'x,y', got {data['k']!r}") from e
            expanded = {k: v for k, v in data.items() if k not in ("k", "v")}
            expanded.update({"x": x, "y": y, "c": data.get("v")})
            return expanded
        return data

    def to_cell(self) -> Cell:
        return Cell(x=self.x, y=self.y, value=self.c, updated_by=self.u, updated_at=self.t)


class CanvasDocument(BaseModel):
    """Full or delta canvas document."""

    territory_id: Optional[str] = Field(None, alias="territoryId")
    pixels: List[CellSchema] = Field(default_factory=list)
    filled_pixels: Optional[int] = Field(None, alias="filledPixels")
    width: int = Field(DEFAULT_WIDTH, gt=0)
    height: int = Field(DEFAULT_HEIGHT, gt=0)
    last_updated: Optional[Union[int, str]] = Field(None, alias="lastUpdated")
    is_delta: bool = Field(False, alias="isDelta")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("pixels", mode="before")
    @classmethod
    def normalize_pixels(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            return [
                {"k": key, "v": cell.get("c") if isinstance(cell, dict) else cell}
                for key, cell in value.items()
            ]
        return value

    @field_validator("width", "height", mode="before")
    @classmethod
    def default_dimension(cls, value: Any, info) -> Any:
        if value is None:
            return DEFAULT_WIDTH if info.field_name == "width" else DEFAULT_HEIGHT
        return value


def _validate(data: Any) -> CanvasDocument:
    if not isinstance(data, dict):
        raise ValidationError(
            f"Canvas document must be an object, got {type(data).__name__}"
        )
    try:
        return CanvasDocument.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"Malformed canvas document: {first.get('msg', e)}", field=field) from e


def normalize_payload(entity_id: str, data: Any) -> EntityPayload:
    """Turn a store response into a full payload.

    None (no document) yields an empty payload. Tombstones are dropped.

    Raises:
        ValidationError: The document is malformed
    """
    if data is None:
        return EntityPayload.empty(entity_id)
    document = _validate(data)
    return EntityPayload.from_cells(
        entity_id,
        (cell.to_cell() for cell in document.pixels),
        width=document.width,
        height=document.height,
        last_updated=document.last_updated,
    )


def parse_write_payload(entity_id: str, data: Any) -> WritePayload:
    """Decide full vs. delta from the explicit ``isDelta`` flag.

    Raises:
        ValidationError: The document is malformed
    """
    document = _validate(data)
    cells = [cell.to_cell() for cell in document.pixels]
    if document.is_delta:
        return DeltaPayload.from_cells(entity_id, cells, last_updated=document.last_updated)
    return EntityPayload.from_cells(
        entity_id,
        cells,
        width=document.width,
        height=document.height,
        last_updated=document.last_updated,
    )


def coerce_write_payload(entity_id: str, payload: Any) -> WritePayload:
    """Accept an already-built payload or a wire document."""
    if isinstance(payload, (EntityPayload, DeltaPayload)):
        if payload.entity_id != entity_id:
            raise ValidationError(
                f"Payload belongs to {payload.entity_id}, not {entity_id}",
                field="entity_id",
            )
        return payload
    return parse_write_payload(entity_id, payload)
