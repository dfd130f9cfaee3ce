import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    user_id: str | UUID | None,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict | None = None,
):
    """Record who changed what; a failed audit write never fails the change."""

    log = models.AuditLog(
        user_id=UUID(str(user_id)) if user_id else None,
        action=action,
        target_type=target_type,
        target_id=UUID(str(target_id)) if target_id else None,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("unable to write audit entry action=%s error=%s", action, exc)
        return None
    db.refresh(log)
    return log
