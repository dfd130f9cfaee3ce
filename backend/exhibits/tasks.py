import os
from uuid import UUID

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import session_scope
from .search import get_search_index
from .services.exhibits import touch_exhibit
from .services.reconcile import reconcile_publication
from .services.republish import dispatch_due_jobs, run_republish_job

logger = get_task_logger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
RECONCILE_INTERVAL_MINUTES = int(os.getenv("RECONCILE_INTERVAL_MINUTES", "60"))

celery_app = Celery("exhibits", broker=CELERY_BROKER_URL)
# eager execution skips the republish delay, so only the test suite runs inline
celery_app.conf.task_always_eager = os.getenv("TESTING") == "1"

celery_app.conf.beat_schedule = {
    "reconcile-publication": {
        "task": "exhibits.tasks.reconcile_publication_task",
        "schedule": crontab(minute=f"*/{RECONCILE_INTERVAL_MINUTES}")
        if RECONCILE_INTERVAL_MINUTES < 60
        else crontab(minute=0),
    },
    "dispatch-due-republish-jobs": {
        "task": "exhibits.tasks.dispatch_due_republish_jobs",
        "schedule": crontab(),
    },
}


@celery_app.task
def republish_record(job_id: str, token: str) -> str:
    with session_scope() as db:
        status = run_republish_job(
            db,
            UUID(job_id),
            token,
            get_search_index(),
            dispatcher=enqueue_republish,
        )
    logger.info("republish job=%s finished status=%s", job_id, status)
    return status


def enqueue_republish(job_id: str, token: str, countdown: float) -> None:
    if celery_app.conf.task_always_eager:
        republish_record(job_id, token)
    else:
        republish_record.apply_async(args=[job_id, token], countdown=countdown)


@celery_app.task
def dispatch_due_republish_jobs() -> int:
    with session_scope() as db:
        return dispatch_due_jobs(db, dispatcher=enqueue_republish)


@celery_app.task
def touch_exhibit_task(exhibit_id: str) -> bool:
    with session_scope() as db:
        return touch_exhibit(db, UUID(exhibit_id))


def enqueue_touch_exhibit(exhibit_id: str) -> None:
    if celery_app.conf.task_always_eager:
        touch_exhibit_task(exhibit_id)
    else:
        touch_exhibit_task.delay(exhibit_id)


@celery_app.task
def reconcile_publication_task(repair: bool = False) -> dict:
    with session_scope() as db:
        report = reconcile_publication(db, get_search_index(), repair=repair)
    logger.info("reconcile checked=%s findings=%s", report.checked, len(report.findings))
    return report.model_dump(mode="json")
