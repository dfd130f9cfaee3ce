from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..exceptions import StoreFailure
from ..kinds import get_kind
from ..search import SearchIndex

# purpose: durable, cancellable delayed republish keyed by record id
# depends_on: exhibits.models.RepublishJob, exhibits.tasks (default dispatcher)

logger = logging.getLogger(__name__)

REPUBLISH_DELAY_SECONDS = float(os.getenv("REPUBLISH_DELAY_SECONDS", "5"))
REPUBLISH_MAX_ATTEMPTS = int(os.getenv("REPUBLISH_MAX_ATTEMPTS", "3"))
# purpose: a job overdue by this much was lost by the broker and is dispatched again
REPUBLISH_GRACE_SECONDS = float(os.getenv("REPUBLISH_GRACE_SECONDS", "30"))

PENDING_STATUSES = ("scheduled", "running")

# dispatcher(job_id, token, countdown)
Dispatcher = Callable[[str, str, float], None]


def _default_dispatcher(job_id: str, token: str, countdown: float) -> None:
    from ..tasks import enqueue_republish

    enqueue_republish(job_id, token, countdown)


class RepublishScheduler:
    def __init__(
        self,
        db: Session,
        *,
        dispatcher: Optional[Dispatcher] = None,
        delay: Optional[float] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or _default_dispatcher
        self.delay = REPUBLISH_DELAY_SECONDS if delay is None else delay

    def pending(self, record_id: UUID) -> Optional[models.RepublishJob]:
        return (
            self.db.query(models.RepublishJob)
            .filter(
                models.RepublishJob.record_id == record_id,
                models.RepublishJob.status == "scheduled",
            )
            .order_by(models.RepublishJob.created_at.desc())
            .first()
        )

    def schedule(
        self,
        kind: str,
        record_id: UUID,
        exhibit_id: UUID,
        parent_id: Optional[UUID] = None,
    ) -> models.RepublishJob:
        """Persist a fresh job for the record and hand it to the dispatcher.

        Earlier jobs that have not started yet are superseded, so only the
        newest edit publishes.
        """

        now = models.utcnow()
        try:
            superseded = (
                self.db.query(models.RepublishJob)
                .filter(
                    models.RepublishJob.record_id == record_id,
                    models.RepublishJob.status == "scheduled",
                )
                .update({"status": "superseded", "updated_at": now}, synchronize_session=False)
            )
            job = models.RepublishJob(
                kind=kind,
                record_id=record_id,
                exhibit_id=exhibit_id,
                parent_id=parent_id,
                status="scheduled",
                run_after=now + timedelta(seconds=self.delay),
            )
            self.db.add(job)
            self.db.commit()
            self.db.refresh(job)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to schedule republish uuid=%s error=%s", record_id, exc)
            raise StoreFailure("Unable to schedule republish") from exc
        if superseded:
            logger.info("superseded %s pending republish job(s) uuid=%s", superseded, record_id)
        self._dispatch(job)
        return job

    def _dispatch(self, job: models.RepublishJob) -> None:
        job_id, token = str(job.id), job.token
        try:
            self.dispatcher(job_id, token, self.delay)
        except Exception as exc:
            # broker unavailable; leave a dead-letter row behind
            logger.error("unable to dispatch republish job=%s error=%s", job_id, exc)
            self.db.rollback()
            job = self.db.get(models.RepublishJob, job.id)
            if job is not None and job.status == "scheduled":
                job.status = "failed"
                job.last_error = f"dispatch failed: {exc}"
                self.db.commit()
            return
        logger.info("republish scheduled job=%s delay=%ss", job_id, self.delay)

    def cancel(self, record_id: UUID) -> int:
        try:
            count = (
                self.db.query(models.RepublishJob)
                .filter(
                    models.RepublishJob.record_id == record_id,
                    models.RepublishJob.status.in_(PENDING_STATUSES),
                )
                .update({"status": "cancelled", "updated_at": models.utcnow()}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("unable to cancel republish uuid=%s error=%s", record_id, exc)
            raise StoreFailure("Unable to cancel republish") from exc
        if count:
            logger.info("cancelled %s republish job(s) uuid=%s", count, record_id)
        return count


def run_republish_job(
    db: Session,
    job_id: UUID,
    token: str,
    index: SearchIndex,
    *,
    dispatcher: Optional[Dispatcher] = None,
    max_attempts: Optional[int] = None,
) -> str:
    """Execute one dispatch of a republish job and return its resulting status."""

    from .lifecycle import LifecycleCoordinator

    max_attempts = REPUBLISH_MAX_ATTEMPTS if max_attempts is None else max_attempts
    job = db.get(models.RepublishJob, job_id)
    if job is None:
        logger.warning("republish job=%s not found", job_id)
        return "missing"
    if job.token != token or job.status != "scheduled":
        logger.info("republish job=%s skipped status=%s", job_id, job.status)
        return job.status

    # a duplicate delivery of the same job loses this claim
    claimed = (
        db.query(models.RepublishJob)
        .filter(
            models.RepublishJob.id == job_id,
            models.RepublishJob.token == token,
            models.RepublishJob.status == "scheduled",
        )
        .update(
            {
                "status": "running",
                "attempts": (job.attempts or 0) + 1,
                "updated_at": models.utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(job)
    if claimed != 1:
        logger.info("republish job=%s already claimed status=%s", job_id, job.status)
        return job.status

    scheduler = RepublishScheduler(db, dispatcher=dispatcher)
    if job.kind == "exhibit":
        from .exhibits import republish_exhibit

        result = republish_exhibit(db, job.exhibit_id, index, scheduler=scheduler)
    else:
        coordinator = LifecycleCoordinator(db, get_kind(job.kind), index=index, scheduler=scheduler)
        result = coordinator.republish(job.exhibit_id, job.record_id, job.parent_id)

    db.refresh(job)
    if job.status != "running":
        # cancelled while publishing
        logger.info("republish job=%s finished after status changed to %s", job_id, job.status)
        return job.status
    if result.status:
        job.status = "completed"
        job.last_error = None
        db.commit()
        logger.info("republish job=%s completed uuid=%s", job_id, job.record_id)
        return job.status

    job.last_error = result.message
    if job.attempts < max_attempts:
        job.status = "scheduled"
        job.run_after = models.utcnow() + timedelta(seconds=scheduler.delay)
        db.commit()
        logger.warning(
            "republish job=%s attempt %s/%s failed: %s",
            job_id,
            job.attempts,
            max_attempts,
            result.message,
        )
        scheduler._dispatch(job)
        return job.status

    job.status = "failed"
    db.commit()
    logger.error("republish job=%s failed after %s attempts: %s", job_id, job.attempts, result.message)
    return job.status


def dispatch_due_jobs(
    db: Session,
    *,
    dispatcher: Optional[Dispatcher] = None,
    now: Optional[datetime] = None,
    grace: Optional[float] = None,
) -> int:
    """Hand scheduled jobs whose ``run_after`` has passed to the dispatcher.

    Jobs that are not yet due are left alone. Running the same job twice is
    harmless because ``run_republish_job`` claims it with a conditional update.
    """

    now = now or models.utcnow()
    grace = REPUBLISH_GRACE_SECONDS if grace is None else grace
    dispatcher = dispatcher or _default_dispatcher
    due = (
        db.query(models.RepublishJob)
        .filter(
            models.RepublishJob.status == "scheduled",
            models.RepublishJob.run_after <= now - timedelta(seconds=grace),
        )
        .order_by(models.RepublishJob.run_after)
        .all()
    )
    targets = [(str(job.id), job.token) for job in due]
    dispatched = 0
    for job_id, token in targets:
        try:
            dispatcher(job_id, token, 0)
        except Exception as exc:
            logger.error("unable to dispatch due republish job=%s error=%s", job_id, exc)
            continue
        dispatched += 1
    if dispatched:
        logger.info("dispatched %s due republish job(s)", dispatched)
    return dispatched
