"""Singleton sync status in DB (SyncStatus row "current")."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .message_store import count_unprocessed
from .models import SyncStatus

SYNC_ID = "current"
BUSY_STATUSES = ("fetching", "processing")


def get_sync_row(db: Session) -> Optional[SyncStatus]:
    return db.get(SyncStatus, SYNC_ID)


def _ensure_row(db: Session) -> None:
    if get_sync_row(db) is not None:
        return
    db.add(SyncStatus(id=SYNC_ID, status="idle", updated_at=datetime.utcnow()))
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently; fine.
        db.rollback()


def try_begin_sync(db: Session) -> bool:
    """
    Move the sync record to "fetching" unless a sync is already fetching/processing.

    Single conditional UPDATE, so concurrent triggers cannot both start.
    """
    _ensure_row(db)
    now = datetime.utcnow()
    result = db.execute(
        update(SyncStatus)
        .where(SyncStatus.id == SYNC_ID, SyncStatus.status.not_in(BUSY_STATUSES))
        .values(
            status="fetching",
            triggered_at=now,
            completed_at=None,
            lookback_hours=None,
            emails_fetched=0,
            new_emails=0,
            existing_emails=0,
            emails_queued=0,
            emails_processed=0,
            emails_remaining=0,
            job_id=None,
            error=None,
            error_category=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return False
    db.commit()
    return True


def set_sync_lookback(db: Session, hours: int) -> None:
    row = get_sync_row(db)
    if not row:
        return
    row.lookback_hours = int(hours)
    row.updated_at = datetime.utcnow()
    db.commit()


def set_sync_processing(
    db: Session,
    *,
    fetched: int,
    new: int,
    existing: int,
    remaining: int,
    job_id: Optional[str] = None,
) -> None:
    """Fetch finished; the queue now drains the captured messages."""
    row = get_sync_row(db)
    if not row:
        return
    now = datetime.utcnow()
    row.status = "processing"
    row.emails_fetched = int(fetched)
    row.new_emails = int(new)
    row.existing_emails = int(existing)
    row.emails_queued = int(new)
    row.emails_remaining = int(remaining)
    row.emails_processed = max(0, int(new) - int(remaining))
    row.job_id = job_id
    row.last_successful_sync_at = row.triggered_at or now
    row.updated_at = now
    db.commit()


def set_sync_job(db: Session, job_id: str) -> None:
    row = get_sync_row(db)
    if not row:
        return
    row.job_id = job_id
    row.updated_at = datetime.utcnow()
    db.commit()


def set_sync_completed(db: Session, *, fetched: int = 0, new: int = 0, existing: int = 0) -> None:
    """Nothing left to process (or nothing fetched at all)."""
    row = get_sync_row(db)
    if not row:
        return
    now = datetime.utcnow()
    row.status = "completed"
    row.emails_fetched = int(fetched)
    row.new_emails = int(new)
    row.existing_emails = int(existing)
    row.emails_queued = int(new)
    row.emails_processed = int(new)
    row.emails_remaining = 0
    row.completed_at = now
    row.last_successful_sync_at = row.triggered_at or now
    row.updated_at = now
    db.commit()


def set_sync_failed(db: Session, error: str, error_category: Optional[str] = None) -> None:
    _ensure_row(db)
    row = get_sync_row(db)
    now = datetime.utcnow()
    row.status = "failed"
    row.error = error
    row.error_category = error_category
    row.completed_at = now
    row.updated_at = now
    db.commit()


def _row_to_dict(row: SyncStatus) -> dict[str, Any]:
    return {
        "status": row.status or "idle",
        "lookback_hours": row.lookback_hours,
        "emails_fetched": int(row.emails_fetched or 0),
        "new_emails": int(row.new_emails or 0),
        "existing_emails": int(row.existing_emails or 0),
        "emails_queued": int(row.emails_queued or 0),
        "emails_processed": int(row.emails_processed or 0),
        "emails_remaining": int(row.emails_remaining or 0),
        "job_id": row.job_id,
        "triggered_at": row.triggered_at,
        "completed_at": row.completed_at,
        "last_successful_sync_at": row.last_successful_sync_at,
        "error": row.error,
        "error_category": row.error_category,
    }


def get_state_from_db(db: Session) -> dict[str, Any]:
    """
    Sync status for polling clients.

    While "processing", counts come from the live unprocessed total; once it
    reaches zero the record is completed.
    """
    row = get_sync_row(db)
    if not row:
        return {"status": "idle", "emails_fetched": 0, "new_emails": 0, "existing_emails": 0,
                "emails_queued": 0, "emails_processed": 0, "emails_remaining": 0}
    if row.status == "processing":
        remaining = count_unprocessed(db)
        queued = int(row.emails_queued or 0)
        now = datetime.utcnow()
        row.emails_remaining = remaining
        row.emails_processed = max(0, queued - remaining)
        if remaining == 0:
            row.status = "completed"
            row.emails_processed = queued
            row.completed_at = now
        row.updated_at = now
        db.commit()
    return _row_to_dict(row)
