"""Raw message store: idempotent capture and the processing claim."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .event_log import MESSAGE, log_event
from .models import Message

logger = logging.getLogger(__name__)


def upsert_message(
    db: Session,
    *,
    message_id: str,
    subject: str,
    sender: str,
    date: str,
    body: str,
    received_at: Optional[datetime] = None,
) -> bool:
    """
    Store or merge a captured message. Returns True when the message is new.

    Re-capturing a known message refreshes its metadata only; received_at and
    the processed/processing/processing_started_at fields are left untouched.
    """
    now = datetime.utcnow()
    existing = db.get(Message, message_id)
    if existing is not None:
        existing.subject = subject
        existing.sender = sender
        existing.date = date
        existing.body = body
        existing.updated_at = now
        log_event(db, MESSAGE, message_id, "email_updated", {"subject": subject})
        db.commit()
        return False

    db.add(
        Message(
            id=message_id,
            subject=subject,
            sender=sender,
            date=date,
            body=body,
            received_at=received_at or now,
            processed=False,
            processing=False,
            created_at=now,
            updated_at=now,
        )
    )
    log_event(db, MESSAGE, message_id, "email_received", {"subject": subject})
    try:
        db.commit()
    except IntegrityError:
        # Inserted concurrently by another capture; merge into that row instead.
        db.rollback()
        logger.info(f"Message {message_id} inserted concurrently; merging")
        return upsert_message(
            db,
            message_id=message_id,
            subject=subject,
            sender=sender,
            date=date,
            body=body,
            received_at=received_at,
        )
    return True


def claim_message(
    db: Session,
    message_id: str,
    *,
    now: Optional[datetime] = None,
    lock_timeout_s: Optional[int] = None,
) -> bool:
    """
    Try to take the processing claim on a message. Returns True if this caller owns it.

    The claim is a single conditional UPDATE, so of two concurrent callers at
    most one sees rowcount == 1. Processed messages are never claimed; a claim
    older than the lock timeout is treated as abandoned and taken over.
    """
    now = now or datetime.utcnow()
    timeout = settings.processing_lock_timeout_s if lock_timeout_s is None else lock_timeout_s
    stale_before = now - timedelta(seconds=timeout)

    current = db.get(Message, message_id)
    if current is None or current.processed:
        return False
    reclaiming = bool(current.processing)

    result = db.execute(
        update(Message)
        .where(
            Message.id == message_id,
            Message.processed.is_(False),
            or_(
                Message.processing.is_(False),
                Message.processing_started_at.is_(None),
                Message.processing_started_at < stale_before,
            ),
        )
        .values(processing=True, processing_started_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return False

    log_event(db, MESSAGE, message_id, "processing_started", {"lock_expired_and_reclaimed": reclaiming})
    db.commit()
    if reclaiming:
        logger.warning(f"Reclaimed stale processing lock on message {message_id}")
    return True


def release_message(db: Session, message_id: str, error: str) -> None:
    """Drop the claim after a failed attempt so a later run can retry the message."""
    now = datetime.utcnow()
    db.execute(
        update(Message)
        .where(Message.id == message_id, Message.processed.is_(False))
        .values(processing=False, processing_started_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    log_event(
        db,
        MESSAGE,
        message_id,
        "processing_released",
        {"reason": "error_during_processing", "error": error},
    )
    db.commit()


def mark_processed(db: Session, message: Message, *, transaction_id: str, should_track: bool) -> None:
    """Stage processed=True for a message. The caller commits together with its transaction."""
    now = datetime.utcnow()
    message.processed = True
    message.processing = False
    message.processing_started_at = None
    message.processed_at = now
    message.updated_at = now
    log_event(
        db,
        MESSAGE,
        message.id,
        "processing_completed",
        {"transaction_id": transaction_id, "should_track": should_track},
    )


def list_unprocessed(db: Session, limit: int) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.processed.is_(False))
        .order_by(Message.received_at.asc(), Message.id.asc())
        .limit(max(0, int(limit)))
        .all()
    )


def count_unprocessed(db: Session) -> int:
    return db.query(Message).filter(Message.processed.is_(False)).count()


def unprocess_all(db: Session, batch_size: Optional[int] = None) -> int:
    """Reset every processed message to unprocessed, committing every batch_size rows."""
    size = max(1, batch_size or settings.store_write_batch_size)
    ids = [row[0] for row in db.query(Message.id).filter(Message.processed.is_(True)).all()]
    now = datetime.utcnow()
    for start in range(0, len(ids), size):
        chunk = ids[start:start + size]
        db.execute(
            update(Message)
            .where(Message.id.in_(chunk))
            .values(
                processed=False,
                processing=False,
                processing_started_at=None,
                processed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        for mid in chunk:
            log_event(db, MESSAGE, mid, "unprocessed")
        db.commit()
    logger.info(f"Reset {len(ids)} messages to unprocessed")
    return len(ids)
