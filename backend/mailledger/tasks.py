"""Celery tasks: processing jobs, scheduled queue drain. DB session per task; state in DB."""
import logging
from typing import Optional

from .celery_app import celery_app
from .config import settings
from .database import SessionLocal
from .job_state_db import create_job, get_job, job_to_dict
from .services.queue_processor import run_job_processor

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="mailledger.tasks.run_processing_job")
def run_processing_job(self, job_id: str):
    """
    Run a pending ProcessingJob created by the API or a sync.
    Failures are written to the job record by the processor, then re-raised.
    """
    db = SessionLocal()
    try:
        run_job_processor(db, job_id)
        job = get_job(db, job_id)
        return job_to_dict(job) if job else None
    finally:
        db.close()


@celery_app.task(bind=True, name="mailledger.tasks.scheduled_process_queue")
def scheduled_process_queue(self, limit: Optional[int] = None):
    """Beat entry point: drain a larger batch on a fixed interval."""
    db = SessionLocal()
    try:
        job = create_job(db, limit=limit or settings.queue_scheduled_batch_size, trigger="scheduled")
        logger.info(f"Scheduled processing job {job.id} (limit={job.limit})")
        run_job_processor(db, job.id)
        return job_to_dict(get_job(db, job.id))
    finally:
        db.close()

