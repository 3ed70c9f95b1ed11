"""
OEE Monitor - Celery Application Configuration

This module configures the Celery application for background task processing.
Redis is the message broker and result backend; the beat scheduler runs the
OEE history retention job.
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun
import structlog

from oee_monitor.config import settings

logger = structlog.get_logger()

celery_app = Celery(
    "oee_monitor",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "oee_monitor.tasks.history_tasks",
    ]
)

celery_app.conf.update(
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "oee_monitor.tasks.history_tasks.*": {
            "queue": "oee",
            "routing_key": "oee"
        },
    },

    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,

    # Task timeouts and retries
    task_soft_time_limit=300,
    task_time_limit=600,
    task_default_retry_delay=60,

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
    task_track_started=True,

    beat_schedule={
        "prune-oee-history": {
            "task": "oee_monitor.tasks.history_tasks.prune_oee_history",
            "schedule": crontab(hour=3, minute=0),  # Daily at 03:00 UTC
            "options": {"queue": "oee"}
        },
    },

    task_default_queue="default",

    broker_connection_retry_on_startup=True,
)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **kwds):
    """Log task start."""
    logger.info("Task starting", task_id=task_id, task_name=task.name)


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **kwds):
    """Log task completion."""
    logger.info("Task completed", task_id=task_id, task_name=task.name, state=state)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, traceback=None, einfo=None, **kwds):
    """Log task failure."""
    logger.error(
        "Task failed",
        task_id=task_id,
        task_name=sender.name if sender else None,
        exception=str(exception)
    )


__all__ = ["celery_app"]
