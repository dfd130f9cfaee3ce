from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Optional

from elasticsearch import ApiError, Elasticsearch, TransportError
from sqlalchemy.orm import Session

from . import models
from .exceptions import IndexFailure
from .kinds import RecordKind
from .validation import load_styles

logger = logging.getLogger(__name__)

ES_URL = os.environ.get("ELASTICSEARCH_URL")
INDEX_NAME = os.environ.get("ELASTICSEARCH_INDEX", "exhibits")


class SearchIndex:
    """Thin wrapper around the Elasticsearch client.

    Operations report success as booleans; transport and API errors are
    logged and turned into ``False``. Without a client every write is a
    no-op that succeeds, so local development works without a cluster.
    """

    def __init__(self, client: Optional[Elasticsearch], index_name: str = INDEX_NAME):
        self._client = client
        self.index_name = index_name

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def index_document(self, doc_id: Any, document: dict[str, Any]) -> bool:
        if not self._client:
            return True
        try:
            self._client.index(index=self.index_name, id=str(doc_id), document=document)
        except (ApiError, TransportError) as exc:
            logger.error("unable to index record uuid=%s error=%s", doc_id, exc)
            return False
        logger.info("record indexed uuid=%s", doc_id)
        return True

    def delete_document(self, doc_id: Any) -> bool:
        """Remove a document; one that is already absent counts as removed."""

        if not self._client:
            return True
        try:
            self._client.options(ignore_status=[404]).delete(index=self.index_name, id=str(doc_id))
        except (ApiError, TransportError) as exc:
            logger.error("unable to delete record from index uuid=%s error=%s", doc_id, exc)
            return False
        logger.info("record removed from index uuid=%s", doc_id)
        return True

    def get_document(self, doc_id: Any) -> Optional[dict[str, Any]]:
        if not self._client:
            return None
        try:
            resp = self._client.options(ignore_status=[404]).get(index=self.index_name, id=str(doc_id))
        except (ApiError, TransportError) as exc:
            raise IndexFailure(f"Unable to read index record {doc_id}: {exc}") from exc
        if not resp.get("found"):
            return None
        return resp.get("_source")


_search_index: Optional[SearchIndex] = None


def get_search_index() -> SearchIndex:
    global _search_index
    if _search_index is None:
        _search_index = SearchIndex(Elasticsearch(ES_URL) if ES_URL else None)
    return _search_index


def set_search_index(index: Optional[SearchIndex]) -> None:
    """Replace the process-wide index (tests and workers)."""

    global _search_index
    _search_index = index


def _project(record: Any, fields: Iterable[str]) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    for field in fields:
        value = getattr(record, field, None)
        if field == "styles":
            value = load_styles(value)
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        elif value is not None and field in ("uuid", "is_member_of_exhibit", "is_member_of_grid", "is_member_of_timeline"):
            value = str(value)
        doc[field] = value
    return doc


def build_exhibit_document(exhibit: models.Exhibit) -> dict[str, Any]:
    doc = _project(exhibit, ("uuid", "type", "title", "subtitle", "description", "styles", "created"))
    doc["is_published"] = True
    return doc


def build_record_document(
    db: Session,
    kind: RecordKind,
    record: Any,
    *,
    include_child: Any = None,
    exclude_child: Any = None,
) -> dict[str, Any]:
    """Index document for a top-level record marked as published.

    Grids and timelines embed their published items. ``include_child`` adds
    an item that is about to be published and ``exclude_child`` drops one
    that is about to be suppressed.
    """

    doc = _project(record, kind.index_fields)
    doc["is_published"] = True
    child = kind.child
    if child is None:
        return doc
    column = getattr(child.model, child.parent_column)
    rows = (
        db.query(child.model)
        .filter(column == record.uuid, child.model.is_deleted.is_(False))
        .order_by(child.model.order)
        .all()
    )
    items = []
    for row in rows:
        if exclude_child is not None and row.uuid == exclude_child:
            continue
        if row.is_published or (include_child is not None and row.uuid == include_child):
            item_doc = _project(row, child.index_fields)
            item_doc["is_published"] = True
            items.append(item_doc)
    doc["items"] = items
    return doc
