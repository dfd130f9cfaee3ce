from __future__ import annotations

import enum
import logging
import os
from datetime import timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import NotLockOwner, StoreFailure
from .kinds import ExhibitKind, RecordKind
from .models import utcnow

logger = logging.getLogger(__name__)

# purpose: locks older than this are stale and may be taken over
LOCK_TIMEOUT_MINUTES = int(os.getenv("LOCK_TIMEOUT_MINUTES", "20"))


class LockStatus(str, enum.Enum):
    ACQUIRED = "acquired"
    HELD = "held"
    CONFLICT = "conflict"
    MISSING = "missing"

    @property
    def owned(self) -> bool:
        return self in (LockStatus.ACQUIRED, LockStatus.HELD)


class LockManager:
    """Advisory single-editor lock stored on the record row.

    Acquisition is one conditional UPDATE so two first viewers racing for
    the same record cannot both win.
    """

    def __init__(self, db: Session, timeout_minutes: int | None = None):
        self.db = db
        self.timeout = timedelta(
            minutes=LOCK_TIMEOUT_MINUTES if timeout_minutes is None else timeout_minutes
        )

    def _scoped(self, kind, record_id: UUID, scope):
        model = kind.model
        return self.db.query(model).filter(model.uuid == record_id, *scope).first()

    def lock(
        self,
        kind: RecordKind | ExhibitKind,
        record_id: UUID,
        user_id: UUID,
        *,
        scope: Sequence = (),
    ) -> LockStatus:
        """Take the lock for ``user_id``.

        ``scope`` holds extra filters, such as the owning exhibit, that the
        record must match.
        """

        model = kind.model
        now = utcnow()
        record = self._scoped(kind, record_id, scope)
        if record is None or record.is_deleted:
            return LockStatus.MISSING
        already_held = record.is_locked and record.locked_by_user == user_id
        stmt = (
            update(model)
            .where(
                model.uuid == record_id,
                *scope,
                model.is_deleted.is_(False),
                or_(
                    model.is_locked.is_(False),
                    model.locked_by_user == user_id,
                    model.locked_at.is_(None),
                    model.locked_at < now - self.timeout,
                ),
            )
            .values(is_locked=True, locked_by_user=user_id, locked_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to lock %s uuid=%s error=%s", kind.label, record_id, exc)
            raise StoreFailure(f"Unable to lock {kind.label} record") from exc
        self.db.expire(record)
        if result.rowcount != 1:
            logger.info(
                "%s uuid=%s is locked by another user, requested by %s",
                kind.label,
                record_id,
                user_id,
            )
            return LockStatus.CONFLICT
        return LockStatus.HELD if already_held else LockStatus.ACQUIRED

    def unlock(
        self,
        kind: RecordKind | ExhibitKind,
        record_id: UUID,
        user_id: UUID | None,
        *,
        scope: Sequence = (),
        force: bool = False,
        is_admin: bool = False,
    ) -> bool:
        model = kind.model
        try:
            record = self._scoped(kind, record_id, scope)
            if record is None:
                logger.info("unlock requested for missing %s uuid=%s", kind.label, record_id)
                return False
            if not record.is_locked:
                return True
            if record.locked_by_user != user_id and not (force or is_admin):
                raise NotLockOwner(record_id, record.locked_by_user)
            record.is_locked = False
            record.locked_by_user = None
            record.locked_at = None
            self.db.commit()
        except NotLockOwner as exc:
            logger.warning("unlock refused: %s", exc)
            return False
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to unlock %s uuid=%s error=%s", kind.label, record_id, exc)
            return False
        logger.info("%s uuid=%s unlocked by %s", kind.label, record_id, user_id)
        return True
