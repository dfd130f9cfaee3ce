import json
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _RecordPayload(BaseModel):
    # clients echo back whole records; identity, lock and audit fields are ignored
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    styles: Optional[dict[str, Any] | str] = None

    @field_validator("styles")
    @classmethod
    def styles_must_be_object(cls, value):
        if value is None or isinstance(value, dict):
            return value
        if value == "":
            return None
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError("styles must be a JSON object") from exc
        if not isinstance(parsed, dict):
            raise ValueError("styles must be a JSON object")
        return parsed


class HeadingCreate(_RecordPayload):
    type: str = "heading"
    text: str = Field(..., min_length=1)
    subtext: Optional[str] = None


class HeadingUpdate(_RecordPayload):
    text: Optional[str] = Field(default=None, min_length=1)
    subtext: Optional[str] = None


class _MediaFields(_RecordPayload):
    item_type: Optional[str] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    text: Optional[str] = None
    mime_type: Optional[str] = None
    media: Optional[str] = None
    thumbnail: Optional[str] = None


class ItemCreate(_MediaFields):
    type: str = "item"
    item_type: str = "text"
    layout: Optional[str] = None
    media_width: Optional[str] = None
    alt_text: Optional[str] = None
    date: Optional[str] = None


class ItemUpdate(_MediaFields):
    layout: Optional[str] = None
    media_width: Optional[str] = None
    alt_text: Optional[str] = None
    date: Optional[str] = None


class GridCreate(_RecordPayload):
    type: str = "grid"
    title: Optional[str] = None
    text: Optional[str] = None
    columns: int = Field(4, ge=1, le=12)


class GridUpdate(_RecordPayload):
    title: Optional[str] = None
    text: Optional[str] = None
    columns: Optional[int] = Field(default=None, ge=1, le=12)


class GridItemCreate(_MediaFields):
    type: str = "item"
    item_type: str = "text"
    date: Optional[str] = None


class GridItemUpdate(_MediaFields):
    date: Optional[str] = None


class TimelineCreate(_RecordPayload):
    type: str = "vertical_timeline"
    title: Optional[str] = None
    text: Optional[str] = None


class TimelineUpdate(_RecordPayload):
    title: Optional[str] = None
    text: Optional[str] = None


class TimelineItemCreate(_MediaFields):
    type: str = "item"
    item_type: str = "text"
    date: str = Field(..., min_length=1)


class TimelineItemUpdate(_MediaFields):
    date: Optional[str] = Field(default=None, min_length=1)


class ExhibitCreate(_RecordPayload):
    type: str = "exhibit"
    title: str = Field(..., min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None


class ExhibitUpdate(_RecordPayload):
    title: Optional[str] = Field(default=None, min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None


class ExhibitOut(BaseModel):
    uuid: UUID
    type: str
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    styles: dict[str, Any] = Field(default_factory=dict)
    is_published: bool
    order: int = 0
    is_locked: bool = False
    locked_by_user: Optional[UUID] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

    @field_validator("styles", mode="before")
    @classmethod
    def parse_styles(cls, value):
        if isinstance(value, str):
            return json.loads(value) if value else {}
        return value or {}


class ReorderEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uuid: str
    order: int = Field(..., ge=0)
    type: Optional[str] = None
    grid_id: Optional[str] = None
    timeline_id: Optional[str] = None


class ReorderSummary(BaseModel):
    message: str
    reordered: int
    failed: int
    failures: list[str] = Field(default_factory=list)


class LifecycleResult(BaseModel):
    """Structured outcome of a coordinator operation."""

    status: int
    message: Any
    data: Any = None


class PublicationResult(BaseModel):
    status: bool
    message: str


class ReconcileFinding(BaseModel):
    kind: str
    record_id: UUID
    exhibit_id: UUID
    problem: Literal["missing_from_index", "stale_in_index"]
    repaired: bool = False


class ReconcileReport(BaseModel):
    checked: int
    findings: list[ReconcileFinding] = Field(default_factory=list)
