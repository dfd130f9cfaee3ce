from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..exceptions import UnknownRecordKind, ValidationFailed
from ..kinds import EXHIBIT, KINDS, PURGE_ORDER, ExhibitKind, RecordKind, get_kind, serialize_record
from ..validation import parse_uuid

logger = logging.getLogger(__name__)


class RecycleManager:
    """Soft-deleted exhibits and records across every kind: list, restore, purge."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _resolve(type_: Any) -> RecordKind | ExhibitKind:
        if str(type_ or "").lower() == EXHIBIT.key:
            return EXHIBIT
        return get_kind(type_)

    def _recycled(self, kind: RecordKind | ExhibitKind, exhibit_id: Optional[UUID] = None):
        model = kind.model
        query = self.db.query(model).filter(model.is_deleted.is_(True))
        if exhibit_id is not None:
            if kind is EXHIBIT:
                query = query.filter(model.uuid == exhibit_id)
            else:
                query = query.filter(model.is_member_of_exhibit == exhibit_id)
        return query

    def get_recycled(self, exhibit_id: Any = None) -> schemas.LifecycleResult:
        exhibit_uuid = None
        if exhibit_id is not None:
            exhibit_uuid = parse_uuid(exhibit_id)
            if exhibit_uuid is None:
                return schemas.LifecycleResult(status=400, message=[{"message": "Invalid exhibit id"}])
        records = []
        try:
            for kind in [KINDS[key] for key in PURGE_ORDER] + [EXHIBIT]:
                for row in self._recycled(kind, exhibit_uuid).order_by(kind.model.updated.desc()).all():
                    data = serialize_record(row)
                    # kind discriminator; the row's own type column is kept as record_type
                    data["record_type"] = data.get("type")
                    data["type"] = kind.key
                    records.append(data)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to get recycled records error=%s", exc)
            return schemas.LifecycleResult(status=500, message="Unable to get recycled records")
        return schemas.LifecycleResult(status=200, message="Recycled records", data=records)

    def _locate(self, exhibit_id: Any, record_id: Any, type_: Any):
        kind = self._resolve(type_)
        exhibit_uuid = parse_uuid(exhibit_id)
        record_uuid = parse_uuid(record_id)
        if exhibit_uuid is None or record_uuid is None:
            raise ValidationFailed("Invalid record id")
        record = (
            self._recycled(kind, exhibit_uuid)
            .filter(kind.model.uuid == record_uuid)
            .first()
        )
        if record is None:
            raise ValidationFailed(f"Recycled {kind.label} record not found")
        return kind, record

    def restore(self, exhibit_id: Any, record_id: Any, type_: Any) -> schemas.LifecycleResult:
        """Return a record to draft; it is neither republished nor reindexed.

        Records of a deleted exhibit stay in the bin until the exhibit is restored.
        """

        try:
            kind, record = self._locate(exhibit_id, record_id, type_)
            if kind is not EXHIBIT:
                exhibit = self.db.get(models.Exhibit, record.is_member_of_exhibit)
                if exhibit is None or exhibit.is_deleted:
                    raise ValidationFailed(f"Unable to restore {kind.label}. Restore its exhibit first")
            record.is_deleted = False
            record.is_published = False
            record.updated = models.utcnow()
            self.db.commit()
        except (UnknownRecordKind, ValidationFailed) as exc:
            return schemas.LifecycleResult(status=400, message=str(exc))
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to restore record uuid=%s error=%s", record_id, exc)
            return schemas.LifecycleResult(status=500, message="Unable to restore record")
        logger.info("%s record restored uuid=%s", kind.label, record_id)
        return schemas.LifecycleResult(status=204, message=f"{kind.label.capitalize()} record restored")

    def _purge_children(self, kind: RecordKind, parent_ids: list[UUID]) -> int:
        child = kind.child
        if child is None or not parent_ids:
            return 0
        column = getattr(child.model, child.parent_column)
        return (
            self.db.query(child.model)
            .filter(column.in_(parent_ids))
            .delete(synchronize_session=False)
        )

    def _purge_exhibit_records(self, exhibit_id: UUID) -> int:
        count = 0
        for key in PURGE_ORDER:
            model = KINDS[key].model
            count += (
                self.db.query(model)
                .filter(model.is_member_of_exhibit == exhibit_id)
                .delete(synchronize_session=False)
            )
        return count

    def delete_permanently(self, exhibit_id: Any, record_id: Any, type_: Any) -> schemas.LifecycleResult:
        try:
            kind, record = self._locate(exhibit_id, record_id, type_)
            if kind is EXHIBIT:
                removed = self._purge_exhibit_records(record.uuid)
            else:
                removed = self._purge_children(kind, [record.uuid])
            self.db.delete(record)
            self.db.commit()
        except (UnknownRecordKind, ValidationFailed) as exc:
            return schemas.LifecycleResult(status=400, message=str(exc))
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to purge record uuid=%s error=%s", record_id, exc)
            return schemas.LifecycleResult(status=500, message="Unable to permanently delete record")
        logger.info("%s record purged uuid=%s dependents=%s", kind.label, record_id, removed)
        return schemas.LifecycleResult(status=204, message=f"{kind.label.capitalize()} record permanently deleted")

    def delete_all(self, exhibit_id: Any = None) -> schemas.LifecycleResult:
        """Purge the whole bin, nested items before their containers and exhibits last."""

        exhibit_uuid = None
        if exhibit_id is not None:
            exhibit_uuid = parse_uuid(exhibit_id)
            if exhibit_uuid is None:
                return schemas.LifecycleResult(status=400, message="Invalid exhibit id")
        count = 0
        try:
            for key in PURGE_ORDER:
                kind = KINDS[key]
                if kind.child is not None:
                    ids = [row.uuid for row in self._recycled(kind, exhibit_uuid).all()]
                    count += self._purge_children(kind, ids)
                count += self._recycled(kind, exhibit_uuid).delete(synchronize_session=False)
            for exhibit in self._recycled(EXHIBIT, exhibit_uuid).all():
                count += self._purge_exhibit_records(exhibit.uuid)
                self.db.delete(exhibit)
                count += 1
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to empty recycle bin error=%s", exc)
            return schemas.LifecycleResult(status=500, message="Unable to empty recycle bin")
        logger.info("recycle bin emptied records=%s", count)
        return schemas.LifecycleResult(status=204, message="Recycle bin emptied", data=count)
