from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "legiswatch",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={
        "legiswatch.services.ingest.run_nightly_ingest": {"queue": "pipeline"},
        "legiswatch.services.publish.run_monthly_publish": {"queue": "pipeline"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Pipeline jobs are single-flight batch runs; one at a time per worker
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    imports=("legiswatch.services.ingest", "legiswatch.services.publish"),
    beat_schedule={
        "nightly-legislative-ingest": {
            "task": "legiswatch.services.ingest.run_nightly_ingest",
            "schedule": crontab(
                hour=settings.INGEST_CRON_HOUR,
                minute=settings.INGEST_CRON_MINUTE,
            ),
        },
        "monthly-template-publish": {
            "task": "legiswatch.services.publish.run_monthly_publish",
            "schedule": crontab(
                day_of_month=settings.PUBLISH_CRON_DAY,
                hour=settings.PUBLISH_CRON_HOUR,
                minute=settings.PUBLISH_CRON_MINUTE,
            ),
            "kwargs": {"batch_type": "monthly"},
        },
    },
)
