"""Celery app for queue processing and sync. Uses Redis; DB session per task."""
from celery import Celery
from .config import settings

celery_app = Celery(
    "mailledger",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["mailledger.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Soft limit raises inside the task so the job is marked failed; the hard limit only catches a hung worker.
    task_soft_time_limit=settings.run_budget_s,
    task_time_limit=settings.run_budget_s + settings.task_hard_limit_grace_s,
    beat_schedule={
        "scheduled-queue-processing": {
            "task": "mailledger.tasks.scheduled_process_queue",
            "schedule": settings.queue_schedule_hours * 3600,
        },
    },
)
