"""
Celery application configuration for background polling.
"""
from datetime import timedelta

from celery import Celery
from app.core.config import settings

# Create Celery app instance
celery_app = Celery(
    "widget_sync",
    include=[
        "app.integrations.tasks",
    ],
)

# Configure Celery from settings
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer=settings.celery_task_serializer,
    result_serializer=settings.celery_result_serializer,
    accept_content=settings.celery_accept_content,
    timezone=settings.celery_timezone,
    enable_utc=settings.celery_enable_utc,
    beat_schedule={
        "scan-stale-integrations": {
            "task": "app.integrations.tasks.scan_stale_integrations_task",
            "schedule": timedelta(seconds=settings.sync_scan_interval_seconds),
        },
    },
    task_track_started=True,
    task_time_limit=600,  # Hard limit per poll
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,  # One task at a time
    worker_max_tasks_per_child=1000,  # Restart worker after 1000 tasks
    task_acks_late=True,  # Acknowledge tasks after completion
    task_reject_on_worker_lost=True,  # Requeue tasks if worker dies
    broker_connection_retry_on_startup=True,  # Retry broker connection on startup
)
