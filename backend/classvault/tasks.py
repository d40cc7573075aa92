import os

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger

from .database import SessionLocal
from .services import notifications
from .storage import get_storage
from . import models

logger = get_task_logger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)


@celery_app.task
def purge_expired_notifications() -> int:
    db = SessionLocal()
    try:
        removed = notifications.purge_expired(db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info("Purged %s expired notifications", removed)
    return removed


@celery_app.task
def report_orphaned_published_objects() -> list[str]:
    """List published objects that no file row references.

    These are left behind when an approval moved the bytes but could not
    record the new version. Nothing is deleted; the keys are only reported.
    """
    db = SessionLocal()
    try:
        known = {key for (key,) in db.query(models.PublishedFile.storage_key).all()}
    finally:
        db.close()
    orphans = [key for key in get_storage().iter_published_keys() if key not in known]
    for key in orphans:
        logger.error("Storage inconsistency: published object %s has no file record", key)
    return orphans


celery_app.conf.beat_schedule = {
    "purge-expired-notifications": {
        "task": "classvault.tasks.purge_expired_notifications",
        "schedule": crontab(hour=3, minute=0),
    },
    "report-orphaned-published-objects": {
        "task": "classvault.tasks.report_orphaned_published_objects",
        "schedule": crontab(hour=4, minute=0),
    },
}
