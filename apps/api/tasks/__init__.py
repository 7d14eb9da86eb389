"""
Celery app for background imports.

The API enqueues by task name (`send_task`) and never imports worker-only code
paths; the worker (apps/worker/main.py) loads this package and runs them.
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from core.config import settings
from core.logging import setup_logging

MIGRATION_QUEUE = "migrations"

celery_app = Celery(
    "moderation_import",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Imports run as long as the export needs; a lost worker redelivers.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # One import holds a whole export in memory; recycle the process afterwards.
    worker_max_tasks_per_child=1,
    task_routes={"migrations.*": {"queue": MIGRATION_QUEUE}},
    result_expires=24 * 60 * 60,
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging()


from . import migration_tasks  # noqa: E402,F401

__all__ = ["celery_app", "MIGRATION_QUEUE"]
