"""Transaction records created from analyzed messages."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from .event_log import TRANSACTION, log_event
from .models import EventLog, Message, Transaction


def save_transaction(
    db: Session,
    message: Message,
    analysis: dict[str, Any],
    *,
    ai_duration_ms: int,
) -> Transaction:
    """
    Stage the transaction for a message (caller commits).

    A message yields at most one transaction: if one already exists for the
    message (reprocessing after an unprocess), it is refreshed in place and
    goes back through internal-movement detection.
    """
    classification = analysis["classification"]
    categorization = analysis["categorization"]
    time_extraction = analysis["time_extraction"]
    details = classification.transaction
    now = datetime.utcnow()

    tx = db.query(Transaction).filter(Transaction.message_id == message.id).first()
    created = tx is None
    if created:
        tx = Transaction(id=str(uuid.uuid4()), message_id=message.id, created_at=now, confirmed=False)
        db.add(tx)

    tx.email_subject = message.subject
    tx.classification = classification.model_dump()
    tx.categorization = categorization.model_dump()
    tx.time_extraction = time_extraction.model_dump()
    tx.should_track = bool(classification.should_track)
    tx.transaction_type = details.type if details else None
    tx.amount = details.amount if details else None
    tx.category = categorization.category
    tx.subcategory = categorization.subcategory
    tx.transaction_datetime = time_extraction.transaction_datetime
    tx.transaction_date = time_extraction.transaction_date
    tx.internal_movement = False
    tx.internal_movement_checked = False
    tx.updated_at = now

    log_event(
        db,
        TRANSACTION,
        tx.id,
        "transaction_created" if created else "transaction_refreshed",
        {"message_id": message.id, "ai_processing_duration_ms": ai_duration_ms},
    )
    db.flush()
    return tx


async def list_transactions(
    db: AsyncSession,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: Optional[int] = None,
    only_tracked: bool = False,
) -> list[Transaction]:
    """Newest first by extracted datetime. Without a full range, at most 100 rows."""
    stmt = select(Transaction)
    if start and end:
        stmt = stmt.where(Transaction.transaction_datetime >= start, Transaction.transaction_datetime <= end)
    if only_tracked:
        stmt = stmt.where(Transaction.should_track.is_(True))
    stmt = stmt.order_by(Transaction.transaction_datetime.desc(), Transaction.created_at.desc())
    if limit:
        stmt = stmt.limit(limit)
    elif not (start and end):
        stmt = stmt.limit(100)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_transaction(
    db: AsyncSession,
    transaction_id: str,
    *,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    confirmed: Optional[bool] = None,
) -> Optional[Transaction]:
    tx = await db.get(Transaction, transaction_id)
    if tx is None:
        return None
    changes: dict[str, Any] = {}
    if category is not None:
        tx.category = category
        changes["category"] = category
    if subcategory is not None:
        tx.subcategory = subcategory
        changes["subcategory"] = subcategory
    if confirmed is not None:
        tx.confirmed = confirmed
        changes["confirmed"] = confirmed
    if changes:
        tx.updated_at = datetime.utcnow()
        db.add(
            EventLog(
                subject_kind=TRANSACTION,
                subject_id=transaction_id,
                event="transaction_updated",
                details=changes,
                created_at=datetime.utcnow(),
            )
        )
        await db.commit()
        await db.refresh(tx)
    return tx
