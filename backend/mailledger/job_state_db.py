"""DB-backed state machine for queue processing jobs (pending -> running -> completed | failed)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from .models import ProcessingJob

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL = (COMPLETED, FAILED)


def create_job(db: Session, *, limit: int, trigger: str = "manual") -> ProcessingJob:
    """Create a pending job so a client polling right away sees a valid record."""
    now = datetime.utcnow()
    job = ProcessingJob(
        id=str(uuid.uuid4()),
        status=PENDING,
        trigger=trigger,
        limit=int(limit),
        processed=0,
        total=0,
        timed_out=False,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    return job


def get_job(db: Session, job_id: str) -> Optional[ProcessingJob]:
    return db.get(ProcessingJob, job_id)


def resolve_job(db: Session, job_id: Optional[str] = None) -> Optional[ProcessingJob]:
    """Job by id; otherwise the newest pending/running job; otherwise the newest job."""
    if job_id:
        return get_job(db, job_id)
    active = (
        db.query(ProcessingJob)
        .filter(ProcessingJob.status.in_((PENDING, RUNNING)))
        .order_by(ProcessingJob.created_at.desc())
        .first()
    )
    if active:
        return active
    return db.query(ProcessingJob).order_by(ProcessingJob.created_at.desc()).first()


def _active(db: Session, job_id: str) -> Optional[ProcessingJob]:
    job = get_job(db, job_id)
    if job is None or job.status in TERMINAL:
        return None
    return job


def set_job_running(db: Session, job_id: str) -> bool:
    """pending -> running. False if the job is missing or already past pending."""
    job = get_job(db, job_id)
    if job is None or job.status != PENDING:
        return False
    now = datetime.utcnow()
    job.status = RUNNING
    job.started_at = now
    job.updated_at = now
    db.commit()
    return True


def set_job_total(db: Session, job_id: str, total: int) -> None:
    job = _active(db, job_id)
    if not job:
        return
    job.total = int(total or 0)
    job.updated_at = datetime.utcnow()
    db.commit()


def update_job_progress(db: Session, job_id: str, *, processed: int, current_item: Optional[str] = None) -> None:
    job = _active(db, job_id)
    if not job:
        return
    job.processed = int(processed or 0)
    job.current_item = (current_item or "")[:255] or None
    job.updated_at = datetime.utcnow()
    db.commit()


def set_job_completed(
    db: Session,
    job_id: str,
    *,
    processed: int,
    remaining: int,
    timed_out: bool = False,
) -> None:
    job = _active(db, job_id)
    if not job:
        return
    now = datetime.utcnow()
    job.status = COMPLETED
    job.processed = int(processed or 0)
    job.remaining = int(remaining or 0)
    job.timed_out = bool(timed_out)
    job.current_item = None
    job.completed_at = now
    job.updated_at = now
    db.commit()


def set_job_failed(db: Session, job_id: str, *, error: str, error_category: Optional[str] = None) -> None:
    job = _active(db, job_id)
    if not job:
        return
    now = datetime.utcnow()
    job.status = FAILED
    job.error = error
    job.error_category = error_category
    job.current_item = None
    job.completed_at = now
    job.updated_at = now
    db.commit()


def job_message(job: ProcessingJob) -> str:
    if job.status == PENDING:
        return "Job is queued and waiting to start"
    if job.status == RUNNING:
        return f"Processing in progress. {job.processed or 0} emails completed so far."
    if job.status == COMPLETED:
        text = f"Processing finished. {job.processed or 0} emails processed, {job.remaining or 0} remaining."
        if job.timed_out:
            text += " Stopped early at the time limit; the next run continues."
        return text
    return f"Processing failed: {job.error or 'Unknown error'}"


def job_to_dict(job: ProcessingJob) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "status": job.status,
        "trigger": job.trigger,
        "message": job_message(job),
        "limit": int(job.limit or 0),
        "processed": int(job.processed or 0),
        "total": int(job.total or 0),
        "remaining": job.remaining,
        "current_item": job.current_item,
        "timed_out": bool(job.timed_out),
        "error": job.error,
        "error_category": job.error_category,
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }
