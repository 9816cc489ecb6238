import os
from celery import Celery
from celery.utils.log import get_task_logger

from .database import SessionLocal
from .errors import TransientStoreError
from .services import scheduler

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
REMINDER_TICK_MINUTES = int(os.getenv("REMINDER_TICK_MINUTES", "5"))
TICK_RETRY_SECONDS = int(os.getenv("REMINDER_TICK_RETRY_SECONDS", "30"))

celery_app = Celery("fleetcheck", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

_logger = get_task_logger(__name__)

celery_app.conf.beat_schedule = {
    "reminder-tick": {
        "task": "fleetcheck.tasks.run_reminder_tick",
        "schedule": REMINDER_TICK_MINUTES * 60.0,
    },
}


@celery_app.task(bind=True, name="fleetcheck.tasks.run_reminder_tick", max_retries=3)
def run_reminder_tick(self) -> dict:
    """Run one scheduler pass in its own session."""

    db = SessionLocal()
    try:
        report = scheduler.tick(db)
    except TransientStoreError as exc:
        # the reminder list itself could not be read; the whole pass is retried
        _logger.warning("Reminder tick could not load configs: %s", exc.message)
        raise self.retry(exc=exc, countdown=TICK_RETRY_SECONDS)
    finally:
        db.close()
    if report.failed:
        _logger.warning("Reminder tick finished with %s failed configs", report.failed)
    return report.as_dict()


def enqueue_reminder_tick():
    if celery_app.conf.task_always_eager:
        return run_reminder_tick()
    return run_reminder_tick.delay()
