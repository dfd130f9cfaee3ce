from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..exceptions import IndexFailure
from ..kinds import KINDS, TOP_LEVEL_KINDS
from ..search import SearchIndex, build_exhibit_document, build_record_document

# purpose: background consistency check between store publish flags and index membership
# status: active

logger = logging.getLogger(__name__)


def _embedded_ids(document: Optional[dict]) -> set[str]:
    if not document:
        return set()
    return {str(item.get("uuid")) for item in document.get("items") or []}


def _compare(
    report: schemas.ReconcileReport,
    index: SearchIndex,
    *,
    kind: str,
    doc_id: UUID,
    exhibit_id: UUID,
    expected: bool,
    document: Optional[dict],
    build: Callable[[], dict[str, Any]],
    repair: bool,
) -> None:
    if expected and document is None:
        repaired = repair and index.index_document(doc_id, build())
        problem = "missing_from_index"
    elif not expected and document is not None:
        repaired = repair and index.delete_document(doc_id)
        problem = "stale_in_index"
    else:
        return
    report.findings.append(
        schemas.ReconcileFinding(
            kind=kind,
            record_id=doc_id,
            exhibit_id=exhibit_id,
            problem=problem,
            repaired=bool(repaired),
        )
    )


def reconcile_publication(
    db: Session,
    index: SearchIndex,
    exhibit_id: Optional[UUID] = None,
    repair: bool = False,
) -> schemas.ReconcileReport:
    """Compare ``is_published`` flags with what the index holds.

    Top-level records and exhibits are checked by document id; grid and
    timeline items are checked against the ``items`` embedded in their
    container's document. With ``repair`` missing documents are rebuilt and
    stale ones removed; an item whose container is not published has its
    flag cleared instead.
    """

    report = schemas.ReconcileReport(checked=0)
    if not index.enabled:
        logger.info("reconcile skipped: search index not configured")
        return report

    exhibits = db.query(models.Exhibit)
    if exhibit_id is not None:
        exhibits = exhibits.filter(models.Exhibit.uuid == exhibit_id)
    for exhibit in exhibits.all():
        report.checked += 1
        try:
            document = index.get_document(exhibit.uuid)
        except IndexFailure as exc:
            logger.error("reconcile: %s", exc)
            continue
        _compare(
            report,
            index,
            kind="exhibit",
            doc_id=exhibit.uuid,
            exhibit_id=exhibit.uuid,
            expected=exhibit.is_published and not exhibit.is_deleted,
            document=document,
            build=lambda: build_exhibit_document(exhibit),
            repair=repair,
        )

    for key in TOP_LEVEL_KINDS:
        kind = KINDS[key]
        model = kind.model
        query = db.query(model)
        if exhibit_id is not None:
            query = query.filter(model.is_member_of_exhibit == exhibit_id)
        for record in query.all():
            report.checked += 1
            try:
                document = index.get_document(record.uuid)
            except IndexFailure as exc:
                logger.error("reconcile: %s", exc)
                continue
            _compare(
                report,
                index,
                kind=kind.key,
                doc_id=record.uuid,
                exhibit_id=record.is_member_of_exhibit,
                expected=record.is_published and not record.is_deleted,
                document=document,
                build=lambda: build_record_document(db, kind, record),
                repair=repair,
            )
            if kind.child is not None:
                _reconcile_items(db, index, kind, record, document, report, repair)

    if report.findings:
        logger.warning(
            "reconcile found %s inconsistencies across %s records (repair=%s)",
            len(report.findings),
            report.checked,
            repair,
        )
    return report


def _reconcile_items(db, index, kind, container, document, report, repair) -> None:
    child = kind.child
    model = child.model
    embedded = _embedded_ids(document)
    items = (
        db.query(model)
        .filter(getattr(model, child.parent_column) == container.uuid)
        .all()
    )
    container_live = container.is_published and not container.is_deleted
    needs_rebuild = []
    for item in items:
        report.checked += 1
        expected = item.is_published and not item.is_deleted
        present = str(item.uuid) in embedded
        if expected == present:
            continue
        finding = schemas.ReconcileFinding(
            kind=child.key,
            record_id=item.uuid,
            exhibit_id=item.is_member_of_exhibit,
            problem="missing_from_index" if expected else "stale_in_index",
        )
        report.findings.append(finding)
        if not repair:
            continue
        if expected and not container_live:
            # an item cannot be live without its container
            item.is_published = False
            db.commit()
            finding.repaired = True
        elif container_live:
            needs_rebuild.append(finding)

    if needs_rebuild:
        ok = index.index_document(container.uuid, build_record_document(db, kind, container))
        for finding in needs_rebuild:
            finding.repaired = ok
