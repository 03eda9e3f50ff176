from celery import Celery
from celery.signals import setup_logging

from visibility_report.core.config import settings
from visibility_report.core.logging import setup_logging as configure_logging
from visibility_report.core.sentry import init_sentry

celery_app = Celery(
    "visibility_report",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Explicit include so the CLI worker registers the tasks
celery_app.conf.include = [
    "visibility_report.tasks.report_tasks",
]


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Keep Celery from replacing the root handler with its own format
    configure_logging()
    init_sentry()
