from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..exceptions import ExhibitsError, StoreFailure, ValidationFailed
from ..kinds import EXHIBIT, KINDS, TOP_LEVEL_KINDS, serialize_record
from ..locks import LockManager, LockStatus
from ..search import SearchIndex, build_exhibit_document
from ..validation import is_truthy_flag, parse_uuid, prepare_styles, validate
from .lifecycle import LifecycleCoordinator
from .republish import RepublishScheduler

# purpose: exhibit aggregate operations and cascading publication
# depends_on: services.lifecycle for per-record publish/suppress, services.republish for delayed republish

logger = logging.getLogger(__name__)


def create_exhibit(
    db: Session,
    payload: schemas.ExhibitCreate,
    *,
    actor_id: Optional[UUID] = None,
) -> models.Exhibit:
    exhibit = models.Exhibit(
        uuid=uuid4(),
        type=payload.type,
        title=payload.title,
        subtitle=payload.subtitle,
        description=payload.description,
        styles=prepare_styles(payload.styles),
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(exhibit)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to create exhibit error=%s", exc)
        raise StoreFailure("Unable to create exhibit") from exc
    db.refresh(exhibit)
    logger.info("exhibit created uuid=%s", exhibit.uuid)
    return exhibit


def get_exhibit(db: Session, exhibit_id: UUID) -> Optional[models.Exhibit]:
    exhibit = db.get(models.Exhibit, exhibit_id)
    if exhibit is None or exhibit.is_deleted:
        return None
    return exhibit


def list_exhibits(db: Session, *, published_only: bool = False) -> list[models.Exhibit]:
    query = db.query(models.Exhibit).filter(models.Exhibit.is_deleted.is_(False))
    if published_only:
        query = query.filter(models.Exhibit.is_published.is_(True))
    return query.order_by(models.Exhibit.order, models.Exhibit.created.desc()).all()


def touch_exhibit(db: Session, exhibit_id: UUID) -> bool:
    """Bump the exhibit ``updated`` timestamp after a child record changes."""

    exhibit = db.get(models.Exhibit, exhibit_id)
    if exhibit is None:
        logger.warning("cannot touch missing exhibit uuid=%s", exhibit_id)
        return False
    exhibit.updated = models.utcnow()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to update exhibit timestamp uuid=%s error=%s", exhibit_id, exc)
        return False
    return True


def update_exhibit(
    db: Session,
    exhibit_id: Any,
    data: Any,
    index: SearchIndex,
    *,
    actor_id: Any = None,
    scheduler: Optional[RepublishScheduler] = None,
) -> schemas.LifecycleResult:
    """Apply an edit; ``is_published`` in the payload restarts publication.

    A published exhibit is suppressed straight away and republished, with
    all of its records, once the republish delay has passed.
    """

    try:
        exhibit_uuid = parse_uuid(exhibit_id)
        if exhibit_uuid is None:
            raise ValidationFailed("Invalid exhibit id")
        if not isinstance(data, dict):
            raise ValidationFailed("Invalid input data format")
        data = dict(data)
        republish = is_truthy_flag(data.pop("is_published", None))
        payload = validate(schemas.ExhibitUpdate, data, context="update exhibit")
        exhibit = get_exhibit(db, exhibit_uuid)
        if exhibit is None:
            raise ValidationFailed("Exhibit record not found")
        for field, value in payload.model_dump(exclude_unset=True).items():
            if field == "styles":
                value = prepare_styles(value)
            elif value is None and field == "title":
                continue
            setattr(exhibit, field, value)
        exhibit.updated = models.utcnow()
        exhibit.updated_by = parse_uuid(actor_id)
        db.commit()
    except ValidationFailed as exc:
        return schemas.LifecycleResult(status=400, message=exc.errors)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to update exhibit uuid=%s error=%s", exhibit_id, exc)
        return schemas.LifecycleResult(status=500, message="Unable to update exhibit record")

    logger.info("exhibit updated uuid=%s", exhibit_uuid)
    scheduler = scheduler or RepublishScheduler(db)
    try:
        if republish:
            suppressed = suppress_exhibit(db, exhibit_uuid, index, scheduler=scheduler)
            if suppressed["status"]:
                scheduler.schedule(EXHIBIT.key, exhibit_uuid, exhibit_uuid)
            else:
                logger.warning("republish not scheduled for exhibit uuid=%s: %s", exhibit_uuid, suppressed["message"])
        elif scheduler.pending(exhibit_uuid) is not None:
            scheduler.schedule(EXHIBIT.key, exhibit_uuid, exhibit_uuid)
    except (ExhibitsError, SQLAlchemyError) as exc:
        db.rollback()
        logger.error("unable to schedule republish for exhibit uuid=%s error=%s", exhibit_uuid, exc)
    return schemas.LifecycleResult(status=200, message="Exhibit record updated")


def _live_records(db: Session, exhibit_id: UUID) -> int:
    # nested items count through their grid or timeline
    count = 0
    for key in TOP_LEVEL_KINDS:
        model = KINDS[key].model
        count += (
            db.query(model)
            .filter(model.is_member_of_exhibit == exhibit_id, model.is_deleted.is_(False))
            .count()
        )
    return count


def delete_exhibit(
    db: Session,
    exhibit_id: Any,
    index: SearchIndex,
    *,
    scheduler: Optional[RepublishScheduler] = None,
) -> schemas.LifecycleResult:
    """Move an exhibit to the recycle bin; exhibits that still hold records are refused."""

    exhibit_uuid = parse_uuid(exhibit_id)
    if exhibit_uuid is None:
        return schemas.LifecycleResult(status=400, message="Invalid exhibit id")
    scheduler = scheduler or RepublishScheduler(db)
    try:
        exhibit = db.get(models.Exhibit, exhibit_uuid)
        if exhibit is None:
            return schemas.LifecycleResult(status=400, message="Exhibit record not found")
        if exhibit.is_deleted:
            return schemas.LifecycleResult(status=204, message="Exhibit record deleted")
        remaining = _live_records(db, exhibit_uuid)
        if remaining:
            logger.info("exhibit uuid=%s not deleted, %s records remain", exhibit_uuid, remaining)
            return schemas.LifecycleResult(
                status=400,
                message="Cannot delete exhibit. Delete its records first",
            )
        if not index.delete_document(exhibit_uuid):
            logger.error("unable to remove exhibit uuid=%s from index, deleting anyway", exhibit_uuid)
        scheduler.cancel(exhibit_uuid)
        exhibit.is_deleted = True
        exhibit.is_published = False
        exhibit.is_locked = False
        exhibit.locked_by_user = None
        exhibit.locked_at = None
        db.commit()
    except ExhibitsError as exc:
        return schemas.LifecycleResult(status=500, message=str(exc))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to delete exhibit uuid=%s error=%s", exhibit_uuid, exc)
        return schemas.LifecycleResult(status=500, message="Unable to delete exhibit record")
    logger.info("exhibit deleted uuid=%s", exhibit_uuid)
    return schemas.LifecycleResult(status=204, message="Exhibit record deleted")


def open_exhibit_for_edit(
    db: Session,
    exhibit_id: Any,
    user_id: Any,
    *,
    locks: Optional[LockManager] = None,
) -> schemas.LifecycleResult:
    exhibit_uuid = parse_uuid(exhibit_id)
    user_uuid = parse_uuid(user_id)
    if exhibit_uuid is None or user_uuid is None:
        return schemas.LifecycleResult(status=400, message="Invalid exhibit or user id")
    locks = locks or LockManager(db)
    try:
        status = locks.lock(EXHIBIT, exhibit_uuid, user_uuid)
        exhibit = get_exhibit(db, exhibit_uuid)
    except ExhibitsError as exc:
        return schemas.LifecycleResult(status=400, message=str(exc))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to open exhibit uuid=%s error=%s", exhibit_uuid, exc)
        return schemas.LifecycleResult(status=400, message="Unable to get exhibit record")
    if exhibit is None:
        status = LockStatus.MISSING
    return schemas.LifecycleResult(
        status=200,
        message="Exhibit edit record",
        data={
            "record": serialize_record(exhibit) if exhibit is not None else None,
            "lock": status.value,
        },
    )


def unlock_exhibit(
    db: Session,
    exhibit_id: Any,
    user_id: Any,
    *,
    force: bool = False,
    is_admin: bool = False,
    locks: Optional[LockManager] = None,
) -> bool:
    exhibit_uuid = parse_uuid(exhibit_id)
    if exhibit_uuid is None:
        logger.warning("unlock requested with invalid exhibit id %s", exhibit_id)
        return False
    locks = locks or LockManager(db)
    return locks.unlock(EXHIBIT, exhibit_uuid, parse_uuid(user_id), force=force, is_admin=is_admin)


def reorder_exhibits(db: Session, entries: list[Any]) -> schemas.ReorderSummary:
    failures = []
    for entry in entries:
        label = str(entry.get("uuid")) if isinstance(entry, dict) else str(entry)
        try:
            parsed = schemas.ReorderEntry.model_validate(entry)
            exhibit_uuid = parse_uuid(parsed.uuid)
            exhibit = get_exhibit(db, exhibit_uuid) if exhibit_uuid else None
            if exhibit is None:
                failures.append(parsed.uuid)
                continue
            exhibit.order = parsed.order
            db.commit()
        except ValidationError as exc:
            logger.warning("invalid exhibit reorder entry: %s", exc)
            failures.append(label)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("unable to reorder exhibit error=%s", exc)
            failures.append(label)
    reordered = len(entries) - len(failures)
    logger.info("exhibits reordered=%s failed=%s", reordered, len(failures))
    return schemas.ReorderSummary(
        message="Exhibits reordered" if not failures else "Unable to reorder some exhibits",
        reordered=reordered,
        failed=len(failures),
        failures=failures,
    )


def _children(db: Session, exhibit_id: UUID, kind_key: str, *, published_only: bool = False):
    kind = KINDS[kind_key]
    model = kind.model
    query = db.query(model).filter(
        model.is_member_of_exhibit == exhibit_id,
        model.is_deleted.is_(False),
    )
    if published_only:
        query = query.filter(model.is_published.is_(True))
    return query.order_by(model.order).all()


def publish_exhibit(
    db: Session,
    exhibit_id: UUID,
    index: SearchIndex,
    *,
    scheduler: Optional[RepublishScheduler] = None,
) -> dict[str, Any]:
    """Index the exhibit, flag it published, then publish its records.

    Containers are published before the items they hold so nested items
    find their grid or timeline already published. A pending delayed
    republish of the exhibit is cancelled first.
    """

    scheduler = scheduler or RepublishScheduler(db)
    try:
        scheduler.cancel(exhibit_id)
    except ExhibitsError as exc:
        return {"status": False, "message": f"Unable to publish exhibit. {exc}", "failed": 0}
    return _publish_exhibit(db, exhibit_id, index, scheduler)


def republish_exhibit(
    db: Session,
    exhibit_id: UUID,
    index: SearchIndex,
    *,
    scheduler: Optional[RepublishScheduler] = None,
) -> schemas.PublicationResult:
    """Publish on behalf of a scheduled job without cancelling it."""

    result = _publish_exhibit(db, exhibit_id, index, scheduler or RepublishScheduler(db))
    return schemas.PublicationResult(status=result["status"], message=result["message"])


def _publish_exhibit(
    db: Session,
    exhibit_id: UUID,
    index: SearchIndex,
    scheduler: RepublishScheduler,
) -> dict[str, Any]:
    exhibit = get_exhibit(db, exhibit_id)
    if exhibit is None:
        return {"status": False, "message": "Unable to publish exhibit. Exhibit not found", "failed": 0}
    if not index.index_document(exhibit.uuid, build_exhibit_document(exhibit)):
        return {"status": False, "message": "Unable to publish exhibit. Search index update failed", "failed": 0}
    try:
        exhibit.is_published = True
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to flag exhibit uuid=%s as published error=%s", exhibit_id, exc)
        index.delete_document(exhibit_id)
        return {"status": False, "message": "Unable to publish exhibit. Record update failed", "failed": 0}

    published = failed = 0
    for key in TOP_LEVEL_KINDS:
        coordinator = LifecycleCoordinator(db, key, index=index, scheduler=scheduler)
        for record in _children(db, exhibit_id, key):
            result = coordinator.publish(exhibit_id, record.uuid)
            if result.status:
                published += 1
            else:
                failed += 1
                logger.warning("exhibit publish: %s", result.message)
            child = coordinator.kind.child
            if child is None:
                continue
            child_coordinator = LifecycleCoordinator(db, child, index=index, scheduler=scheduler)
            items = (
                db.query(child.model)
                .filter(
                    getattr(child.model, child.parent_column) == record.uuid,
                    child.model.is_deleted.is_(False),
                )
                .order_by(child.model.order)
                .all()
            )
            for item in items:
                item_result = child_coordinator.publish(exhibit_id, item.uuid, record.uuid)
                if item_result.status:
                    published += 1
                else:
                    failed += 1
                    logger.warning("exhibit publish: %s", item_result.message)

    logger.info("exhibit published uuid=%s records=%s failed=%s", exhibit_id, published, failed)
    return {
        "status": True,
        "message": "Exhibit published",
        "published": published,
        "failed": failed,
    }


def suppress_exhibit(
    db: Session,
    exhibit_id: UUID,
    index: SearchIndex,
    *,
    scheduler: Optional[RepublishScheduler] = None,
) -> dict[str, Any]:
    exhibit = get_exhibit(db, exhibit_id)
    if exhibit is None:
        return {"status": False, "message": "Unable to suppress exhibit. Exhibit not found", "failed": 0}

    scheduler = scheduler or RepublishScheduler(db)
    suppressed = failed = 0
    for key in TOP_LEVEL_KINDS:
        coordinator = LifecycleCoordinator(db, key, index=index, scheduler=scheduler)
        # suppressing a container also unpublishes its items
        for record in _children(db, exhibit_id, key, published_only=True):
            result = coordinator.suppress(exhibit_id, record.uuid)
            if result.status:
                suppressed += 1
            else:
                failed += 1
                logger.warning("exhibit suppress: %s", result.message)

    if not index.delete_document(exhibit.uuid):
        return {
            "status": False,
            "message": "Unable to suppress exhibit. Search index update failed",
            "failed": failed,
        }
    try:
        exhibit.is_published = False
        (
            db.query(models.RepublishJob)
            .filter(
                models.RepublishJob.exhibit_id == exhibit_id,
                models.RepublishJob.status == "scheduled",
            )
            .update({"status": "cancelled", "updated_at": models.utcnow()}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to flag exhibit uuid=%s as suppressed error=%s", exhibit_id, exc)
        return {"status": False, "message": "Unable to suppress exhibit. Record update failed", "failed": failed}

    logger.info("exhibit suppressed uuid=%s records=%s failed=%s", exhibit_id, suppressed, failed)
    return {
        "status": True,
        "message": "Exhibit suppressed",
        "suppressed": suppressed,
        "failed": failed,
    }
