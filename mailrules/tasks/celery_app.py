"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from mailrules.config import get_settings

settings = get_settings()

celery_app = Celery(
    "mailrules",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "mailrules.tasks.retention_tasks.*": {"queue": "default"},
    },
    beat_schedule={
        # Prune finished rule application records: daily at 4 AM UTC
        "cleanup-old-rule-applications": {
            "task": "mailrules.tasks.retention_tasks.cleanup_old_rule_applications",
            "schedule": crontab(hour=4, minute=0),
        },
    },
)

celery_app.autodiscover_tasks(["mailrules.tasks"])
