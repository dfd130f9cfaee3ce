"""Capability table for the content record kinds.

Every kind shares the same lifecycle; the descriptor carries what differs
between them (table, parent scope, schemas, indexed fields, labels).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from . import models, schemas
from .exceptions import UnknownRecordKind
from .validation import load_styles

_COMMON_INDEX_FIELDS = ("uuid", "is_member_of_exhibit", "type", "order", "styles", "is_published", "created")
_MEDIA_INDEX_FIELDS = ("item_type", "title", "caption", "description", "text", "mime_type", "media", "thumbnail", "date")


@dataclass(frozen=True)
class RecordKind:
    key: str
    label: str
    model: type
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    collection: str
    index_fields: tuple[str, ...]
    parent_key: str | None = None
    parent_column: str | None = None
    child_key: str | None = None

    @property
    def nested(self) -> bool:
        return self.parent_key is not None

    @property
    def parent(self) -> "RecordKind | None":
        return KINDS[self.parent_key] if self.parent_key else None

    @property
    def child(self) -> "RecordKind | None":
        return KINDS[self.child_key] if self.child_key else None

    def scope_filter(self, exhibit_id, parent_id=None) -> list:
        criteria = [self.model.is_member_of_exhibit == exhibit_id]
        if self.parent_column:
            criteria.append(getattr(self.model, self.parent_column) == parent_id)
        return criteria


KINDS: dict[str, RecordKind] = {
    "heading": RecordKind(
        key="heading",
        label="heading",
        model=models.HeadingRecord,
        create_schema=schemas.HeadingCreate,
        update_schema=schemas.HeadingUpdate,
        collection="headings",
        index_fields=_COMMON_INDEX_FIELDS + ("text", "subtext"),
    ),
    "item": RecordKind(
        key="item",
        label="item",
        model=models.ItemRecord,
        create_schema=schemas.ItemCreate,
        update_schema=schemas.ItemUpdate,
        collection="items",
        index_fields=_COMMON_INDEX_FIELDS + _MEDIA_INDEX_FIELDS + ("layout", "media_width", "alt_text"),
    ),
    "grid": RecordKind(
        key="grid",
        label="grid",
        model=models.GridRecord,
        create_schema=schemas.GridCreate,
        update_schema=schemas.GridUpdate,
        collection="grids",
        index_fields=_COMMON_INDEX_FIELDS + ("title", "text", "columns"),
        child_key="grid_item",
    ),
    "timeline": RecordKind(
        key="timeline",
        label="timeline",
        model=models.TimelineRecord,
        create_schema=schemas.TimelineCreate,
        update_schema=schemas.TimelineUpdate,
        collection="timelines",
        index_fields=_COMMON_INDEX_FIELDS + ("title", "text"),
        child_key="timeline_item",
    ),
    "grid_item": RecordKind(
        key="grid_item",
        label="grid item",
        model=models.GridItemRecord,
        create_schema=schemas.GridItemCreate,
        update_schema=schemas.GridItemUpdate,
        collection="items",
        index_fields=_COMMON_INDEX_FIELDS + _MEDIA_INDEX_FIELDS + ("is_member_of_grid",),
        parent_key="grid",
        parent_column="is_member_of_grid",
    ),
    "timeline_item": RecordKind(
        key="timeline_item",
        label="timeline item",
        model=models.TimelineItemRecord,
        create_schema=schemas.TimelineItemCreate,
        update_schema=schemas.TimelineItemUpdate,
        collection="items",
        index_fields=_COMMON_INDEX_FIELDS + _MEDIA_INDEX_FIELDS + ("is_member_of_timeline",),
        parent_key="timeline",
        parent_column="is_member_of_timeline",
    ),
}


@dataclass(frozen=True)
class ExhibitKind:
    """Lock and recycle descriptor for exhibits, which have no parent scope."""

    key: str = "exhibit"
    label: str = "exhibit"
    model: type = models.Exhibit

    def scope_filter(self, exhibit_id, parent_id=None) -> list:
        return [self.model.uuid == exhibit_id]


EXHIBIT = ExhibitKind()

# top-level kinds share one ordering scope per exhibit
TOP_LEVEL_KINDS: tuple[str, ...] = ("heading", "item", "grid", "timeline")
# purge order: children before the containers that own them
PURGE_ORDER: tuple[str, ...] = ("grid_item", "timeline_item", "heading", "item", "grid", "timeline")

_ALIASES = {
    "griditem": "grid_item",
    "timelineitem": "timeline_item",
    "grid-item": "grid_item",
    "timeline-item": "timeline_item",
}


def get_kind(key: str | None) -> RecordKind:
    normalized = str(key or "").lower()
    normalized = _ALIASES.get(normalized, normalized)
    kind = KINDS.get(normalized)
    if kind is None:
        raise UnknownRecordKind(key)
    return kind


def serialize_record(record: Any) -> dict[str, Any]:
    """Column values of a record with ``styles`` decoded."""

    data = {column.name: getattr(record, column.key) for column in record.__table__.columns}
    data["styles"] = load_styles(data.get("styles"))
    return data
