from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..exceptions import ExhibitsError, ValidationFailed
from ..kinds import KINDS, TOP_LEVEL_KINDS, RecordKind, get_kind, serialize_record
from ..locks import LockManager, LockStatus
from ..search import SearchIndex, build_record_document
from ..validation import is_truthy_flag, parse_uuid, prepare_styles, validate
from .republish import RepublishScheduler

# purpose: one lifecycle implementation shared by every content record kind
# depends_on: exhibits.kinds (capability table), exhibits.locks, exhibits.search, services.republish

logger = logging.getLogger(__name__)


def _default_touch(exhibit_id: UUID) -> None:
    from ..tasks import enqueue_touch_exhibit

    enqueue_touch_exhibit(str(exhibit_id))


class LifecycleCoordinator:
    """Create, edit, lock, publish and retire records of one kind.

    Every public operation returns a ``LifecycleResult``,
    ``PublicationResult`` or boolean; internal errors are logged and folded
    into the result instead of propagating.
    """

    def __init__(
        self,
        db: Session,
        kind: RecordKind | str,
        *,
        index: SearchIndex,
        scheduler: Optional[RepublishScheduler] = None,
        locks: Optional[LockManager] = None,
        touch: Optional[Callable[[UUID], None]] = None,
    ):
        self.db = db
        self.kind = get_kind(kind) if isinstance(kind, str) else kind
        self.index = index
        self.scheduler = scheduler or RepublishScheduler(db)
        self.locks = locks or LockManager(db)
        self.touch = touch or _default_touch

    @property
    def label(self) -> str:
        return self.kind.label

    @property
    def title(self) -> str:
        return self.kind.label.capitalize()

    # lookups

    def _ids(self, exhibit_id: Any, record_id: Any = None, parent_id: Any = None, *, with_record: bool = True):
        exhibit_uuid = parse_uuid(exhibit_id)
        if exhibit_uuid is None:
            raise ValidationFailed("Invalid exhibit id")
        record_uuid = None
        if with_record:
            record_uuid = parse_uuid(record_id)
            if record_uuid is None:
                raise ValidationFailed(f"Invalid {self.label} id")
        parent_uuid = None
        if self.kind.nested:
            parent_uuid = parse_uuid(parent_id)
            if parent_uuid is None:
                raise ValidationFailed(f"Invalid {self.kind.parent.label} id")
        return exhibit_uuid, record_uuid, parent_uuid

    def _exhibit(self, exhibit_id: UUID) -> Optional[models.Exhibit]:
        exhibit = self.db.get(models.Exhibit, exhibit_id)
        if exhibit is None or exhibit.is_deleted:
            return None
        return exhibit

    def _parent(self, exhibit_id: UUID, parent_id: UUID):
        parent_kind = self.kind.parent
        model = parent_kind.model
        return (
            self.db.query(model)
            .filter(
                model.uuid == parent_id,
                model.is_member_of_exhibit == exhibit_id,
                model.is_deleted.is_(False),
            )
            .first()
        )

    def _scoped(self, exhibit_id: UUID, parent_id: Optional[UUID] = None):
        model = self.kind.model
        return self.db.query(model).filter(
            *self.kind.scope_filter(exhibit_id, parent_id),
            model.is_deleted.is_(False),
        )

    def _find(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID] = None):
        return self._scoped(exhibit_id, parent_id).filter(self.kind.model.uuid == record_id).first()

    def next_order(self, exhibit_id: UUID, parent_id: Optional[UUID] = None) -> int:
        """Position after the last live sibling, 0 for an empty scope.

        Top-level kinds are siblings of each other inside an exhibit; nested
        items only count the items of their own grid or timeline.
        """

        if self.kind.nested:
            kinds_in_scope = [self.kind]
        else:
            kinds_in_scope = [KINDS[key] for key in TOP_LEVEL_KINDS]
        highest = None
        for kind in kinds_in_scope:
            model = kind.model
            value = (
                self.db.query(func.max(model.order))
                .filter(*kind.scope_filter(exhibit_id, parent_id), model.is_deleted.is_(False))
                .scalar()
            )
            if value is not None and (highest is None or value > highest):
                highest = value
        return 0 if highest is None else highest + 1

    def _touch_exhibit(self, exhibit_id: UUID) -> None:
        try:
            self.touch(exhibit_id)
        except Exception as exc:
            logger.error("unable to update exhibit timestamp exhibit=%s error=%s", exhibit_id, exc)

    # record operations

    def create(self, exhibit_id: Any, data: Any, parent_id: Any = None, actor_id: Any = None) -> schemas.LifecycleResult:
        model = self.kind.model
        try:
            exhibit_uuid, _, parent_uuid = self._ids(exhibit_id, parent_id=parent_id, with_record=False)
            payload = validate(self.kind.create_schema, data, context=f"create {self.label}")
            if self._exhibit(exhibit_uuid) is None:
                raise ValidationFailed("Exhibit not found")
            if self.kind.nested and self._parent(exhibit_uuid, parent_uuid) is None:
                raise ValidationFailed(f"{self.kind.parent.label.capitalize()} not found")
            values = payload.model_dump(exclude_none=True)
            values["styles"] = prepare_styles(values.get("styles"))
            actor = parse_uuid(actor_id)
            record = model(
                **values,
                uuid=uuid4(),
                is_member_of_exhibit=exhibit_uuid,
                order=self.next_order(exhibit_uuid, parent_uuid),
                created_by=actor,
                updated_by=actor,
            )
            if self.kind.nested:
                setattr(record, self.kind.parent_column, parent_uuid)
            self.db.add(record)
            self.db.commit()
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to create %s record error=%s", self.label, exc)
            return schemas.LifecycleResult(status=500, message=f"Unable to create {self.label} record")

        logger.info("%s record created uuid=%s exhibit=%s", self.label, record.uuid, exhibit_uuid)
        self._touch_exhibit(exhibit_uuid)
        return schemas.LifecycleResult(
            status=201,
            message=f"{self.title} record created",
            data=str(record.uuid),
        )

    def get(self, exhibit_id: Any, record_id: Any, parent_id: Any = None) -> schemas.LifecycleResult:
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            record = self._find(exhibit_uuid, record_uuid, parent_uuid)
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to get %s record uuid=%s error=%s", self.label, record_id, exc)
            return schemas.LifecycleResult(status=400, message=f"Unable to get {self.label} record")
        return schemas.LifecycleResult(
            status=200,
            message=f"{self.title} record",
            data=serialize_record(record) if record is not None else None,
        )

    def open_for_edit(self, exhibit_id: Any, record_id: Any, user_id: Any, parent_id: Any = None) -> schemas.LifecycleResult:
        """Read a record and try to take the edit lock for ``user_id``.

        The read succeeds whether or not the lock is granted; ``data.lock``
        carries the outcome.
        """

        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            user_uuid = parse_uuid(user_id)
            if user_uuid is None:
                raise ValidationFailed("Invalid user id")
            record = self._find(exhibit_uuid, record_uuid, parent_uuid)
            if record is None:
                return schemas.LifecycleResult(status=200, message=f"{self.title} record", data=None)
            status = self.locks.lock(
                self.kind,
                record_uuid,
                user_uuid,
                scope=self.kind.scope_filter(exhibit_uuid, parent_uuid),
            )
            record = self._find(exhibit_uuid, record_uuid, parent_uuid)
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except ExhibitsError as exc:
            return schemas.LifecycleResult(status=400, message=str(exc))
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to open %s record uuid=%s error=%s", self.label, record_id, exc)
            return schemas.LifecycleResult(status=400, message=f"Unable to get {self.label} record")
        if record is None:
            status = LockStatus.MISSING
        return schemas.LifecycleResult(
            status=200,
            message=f"{self.title} record",
            data={
                "record": serialize_record(record) if record is not None else None,
                "lock": status.value,
            },
        )

    def list(self, exhibit_id: Any, parent_id: Any = None) -> schemas.LifecycleResult:
        try:
            exhibit_uuid, _, parent_uuid = self._ids(exhibit_id, parent_id=parent_id, with_record=False)
            rows = self._scoped(exhibit_uuid, parent_uuid).order_by(self.kind.model.order).all()
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to list %s records error=%s", self.label, exc)
            return schemas.LifecycleResult(status=400, message=f"Unable to get {self.label} records")
        return schemas.LifecycleResult(
            status=200,
            message=f"{self.title} records",
            data=[serialize_record(row) for row in rows],
        )

    def update(
        self,
        exhibit_id: Any,
        record_id: Any,
        data: Any,
        parent_id: Any = None,
        actor_id: Any = None,
    ) -> schemas.LifecycleResult:
        model = self.kind.model
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            if not isinstance(data, dict):
                raise ValidationFailed("Invalid input data format")
            data = dict(data)
            republish = is_truthy_flag(data.pop("is_published", None))
            payload = validate(self.kind.update_schema, data, context=f"update {self.label}")
            record = self._find(exhibit_uuid, record_uuid, parent_uuid)
            if record is None:
                raise ValidationFailed(f"{self.title} record not found")
            columns = model.__table__.columns
            for field, value in payload.model_dump(exclude_unset=True).items():
                column = columns.get(field)
                if column is None:
                    continue
                if field == "styles":
                    value = prepare_styles(value)
                elif value is None and not column.nullable:
                    continue
                setattr(record, field, value)
            record.updated = models.utcnow()
            record.updated_by = parse_uuid(actor_id)
            self.db.commit()
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to update %s record uuid=%s error=%s", self.label, record_id, exc)
            return schemas.LifecycleResult(status=500, message=f"Unable to update {self.label} record")

        logger.info("%s record updated uuid=%s", self.label, record_uuid)
        try:
            if republish:
                self._start_republish(exhibit_uuid, record_uuid, parent_uuid)
            elif self.scheduler.pending(record_uuid) is not None:
                # restart the delay so the newest content is what gets published
                self.scheduler.schedule(self.kind.key, record_uuid, exhibit_uuid, parent_uuid)
        except (ExhibitsError, SQLAlchemyError) as exc:
            self.db.rollback()
            logger.error("unable to schedule republish for %s uuid=%s error=%s", self.label, record_uuid, exc)
        self._touch_exhibit(exhibit_uuid)
        return schemas.LifecycleResult(status=200, message=f"{self.title} record updated")

    def _start_republish(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID]) -> bool:
        suppressed = self._suppress(exhibit_id, record_id, parent_id)
        if not suppressed.status:
            logger.warning(
                "republish not scheduled for %s uuid=%s: %s",
                self.label,
                record_id,
                suppressed.message,
            )
            return False
        self.scheduler.schedule(self.kind.key, record_id, exhibit_id, parent_id)
        return True

    def delete(self, exhibit_id: Any, record_id: Any, parent_id: Any = None) -> schemas.LifecycleResult:
        model = self.kind.model
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            record = (
                self.db.query(model)
                .filter(*self.kind.scope_filter(exhibit_uuid, parent_uuid), model.uuid == record_uuid)
                .first()
            )
            if record is None:
                raise ValidationFailed(f"{self.title} record not found")
            if record.is_deleted:
                return schemas.LifecycleResult(status=204, message=f"{self.title} record deleted")
            if not self._remove_from_index(exhibit_uuid, record, parent_uuid):
                logger.error("unable to remove %s uuid=%s from index, deleting anyway", self.label, record_uuid)
            self.scheduler.cancel(record_uuid)
            record.is_deleted = True
            record.is_published = False
            record.is_locked = False
            record.locked_by_user = None
            record.locked_at = None
            self._unpublish_children(record.uuid)
            self.db.commit()
        except ValidationFailed as exc:
            return schemas.LifecycleResult(status=400, message=exc.errors)
        except ExhibitsError as exc:
            return schemas.LifecycleResult(status=500, message=str(exc))
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to delete %s record uuid=%s error=%s", self.label, record_id, exc)
            return schemas.LifecycleResult(status=500, message=f"Unable to delete {self.label} record")
        logger.info("%s record deleted uuid=%s", self.label, record_uuid)
        self._touch_exhibit(exhibit_uuid)
        return schemas.LifecycleResult(status=204, message=f"{self.title} record deleted")

    # publication

    def _unpublish_children(self, container_id: UUID) -> int:
        """Clear the publish flag on items embedded in a grid or timeline document."""

        child = self.kind.child
        if child is None:
            return 0
        return (
            self.db.query(child.model)
            .filter(getattr(child.model, child.parent_column) == container_id)
            .update({"is_published": False}, synchronize_session=False)
        )

    def _remove_from_index(self, exhibit_id: UUID, record: Any, parent_id: Optional[UUID]) -> bool:
        if not self.kind.nested:
            return self.index.delete_document(record.uuid)
        parent = self._parent(exhibit_id, parent_id)
        if parent is None or not parent.is_published:
            return True
        document = build_record_document(self.db, self.kind.parent, parent, exclude_child=record.uuid)
        return self.index.index_document(parent.uuid, document)

    def publish(self, exhibit_id: Any, record_id: Any, parent_id: Any = None) -> schemas.PublicationResult:
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            self.scheduler.cancel(record_uuid)
        except ExhibitsError as exc:
            return schemas.PublicationResult(status=False, message=f"Unable to publish {self.label}. {exc}")
        return self._publish(exhibit_uuid, record_uuid, parent_uuid)

    def republish(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID] = None) -> schemas.PublicationResult:
        """Publish on behalf of a scheduled job without cancelling it."""

        return self._publish(exhibit_id, record_id, parent_id)

    def _publish(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID]) -> schemas.PublicationResult:
        label = self.label
        try:
            exhibit = self._exhibit(exhibit_id)
            if exhibit is None or not exhibit.is_published:
                logger.info("publish refused for %s uuid=%s: exhibit not published", label, record_id)
                return schemas.PublicationResult(
                    status=False,
                    message=f"Unable to publish {label}. Exhibit must be published first",
                )
            record = self._find(exhibit_id, record_id, parent_id)
            if record is None:
                return schemas.PublicationResult(status=False, message=f"Unable to publish {label}. Record not found")
            if self.kind.nested:
                parent = self._parent(exhibit_id, parent_id)
                if parent is None or not parent.is_published:
                    parent_title = self.kind.parent.label.capitalize()
                    return schemas.PublicationResult(
                        status=False,
                        message=f"Unable to publish {label}. {parent_title} must be published first",
                    )
                doc_id = parent.uuid
                document = build_record_document(self.db, self.kind.parent, parent, include_child=record.uuid)
            else:
                doc_id = record.uuid
                document = build_record_document(self.db, self.kind, record)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to publish %s uuid=%s error=%s", label, record_id, exc)
            return schemas.PublicationResult(status=False, message=f"Unable to publish {label}")

        if not self.index.index_document(doc_id, document):
            return schemas.PublicationResult(
                status=False,
                message=f"Unable to publish {label}. Search index update failed",
            )
        try:
            record.is_published = True
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to flag %s uuid=%s as published, reverting index error=%s", label, record_id, exc)
            self._revert_index(exhibit_id, record_id, parent_id)
            return schemas.PublicationResult(
                status=False,
                message=f"Unable to publish {label}. Record update failed",
            )
        logger.info("%s published uuid=%s", label, record_id)
        return schemas.PublicationResult(status=True, message=f"{self.title} published")

    def _revert_index(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID]) -> None:
        try:
            if self.kind.nested:
                parent = self._parent(exhibit_id, parent_id)
                if parent is not None:
                    document = build_record_document(self.db, self.kind.parent, parent, exclude_child=record_id)
                    self.index.index_document(parent.uuid, document)
            else:
                self.index.delete_document(record_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to revert index for %s uuid=%s error=%s", self.label, record_id, exc)

    def suppress(self, exhibit_id: Any, record_id: Any, parent_id: Any = None) -> schemas.PublicationResult:
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
            self.scheduler.cancel(record_uuid)
        except ExhibitsError as exc:
            return schemas.PublicationResult(status=False, message=f"Unable to suppress {self.label}. {exc}")
        return self._suppress(exhibit_uuid, record_uuid, parent_uuid)

    def _suppress(self, exhibit_id: UUID, record_id: UUID, parent_id: Optional[UUID]) -> schemas.PublicationResult:
        label = self.label
        try:
            record = self._find(exhibit_id, record_id, parent_id)
            if record is None:
                return schemas.PublicationResult(status=False, message=f"Unable to suppress {label}. Record not found")
            if not self._remove_from_index(exhibit_id, record, parent_id):
                return schemas.PublicationResult(
                    status=False,
                    message=f"Unable to suppress {label}. Search index update failed",
                )
            record.is_published = False
            self._unpublish_children(record.uuid)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to suppress %s uuid=%s error=%s", label, record_id, exc)
            return schemas.PublicationResult(status=False, message=f"Unable to suppress {label}")
        logger.info("%s suppressed uuid=%s", label, record_id)
        return schemas.PublicationResult(status=True, message=f"{self.title} suppressed")

    # ordering and locks

    def reorder(self, exhibit_id: Any, entry: Any, parent_id: Any = None) -> bool:
        try:
            if not isinstance(entry, schemas.ReorderEntry):
                entry = schemas.ReorderEntry.model_validate(entry)
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, entry.uuid, parent_id)
            record = self._find(exhibit_uuid, record_uuid, parent_uuid)
            if record is None:
                logger.warning("reorder skipped, %s uuid=%s not found", self.label, entry.uuid)
                return False
            record.order = entry.order
            self.db.commit()
        except (ValidationError, ValidationFailed) as exc:
            logger.warning("invalid reorder entry for %s: %s", self.label, exc)
            return False
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to reorder %s uuid=%s error=%s", self.label, getattr(entry, "uuid", None), exc)
            return False
        return True

    def unlock(
        self,
        exhibit_id: Any,
        record_id: Any,
        user_id: Any,
        parent_id: Any = None,
        *,
        force: bool = False,
        is_admin: bool = False,
    ) -> bool:
        try:
            exhibit_uuid, record_uuid, parent_uuid = self._ids(exhibit_id, record_id, parent_id)
        except ValidationFailed as exc:
            logger.warning("unlock requested for invalid %s: %s", self.label, exc)
            return False
        return self.locks.unlock(
            self.kind,
            record_uuid,
            parse_uuid(user_id),
            scope=self.kind.scope_filter(exhibit_uuid, parent_uuid),
            force=force,
            is_admin=is_admin,
        )
