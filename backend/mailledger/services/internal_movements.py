"""Internal-movement (self-transfer) detection over trackable, unchecked transactions."""
import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..event_log import TRANSACTION, log_event
from ..langgraph_pipeline import detect_internal_movements
from ..models import Message, Transaction
from ..schemas import InternalMovementResult

logger = logging.getLogger(__name__)


def _chunk_list(items: list, chunk_size: int) -> list[list]:
    if chunk_size <= 0:
        return [items]
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


def _load_bodies(db: Session, message_ids: list[str], chunk_size: int) -> dict[str, str]:
    bodies: dict[str, str] = {}
    for chunk in _chunk_list(message_ids, chunk_size):
        for mid, body in db.query(Message.id, Message.body).filter(Message.id.in_(chunk)).all():
            bodies[mid] = body or ""
    return bodies


def _summary(tx: Transaction, body: str) -> dict[str, Any]:
    return {
        "id": tx.id,
        "amount": tx.amount,
        "type": tx.transaction_type,
        "transaction_datetime": tx.transaction_datetime,
        "email_body": body,
    }


def detect_and_flag_internal_movements(
    db: Session,
    *,
    target_date: Optional[str] = None,
    detect: Optional[Callable[[list[dict]], InternalMovementResult]] = None,
    batch_size: Optional[int] = None,
) -> dict[str, Any]:
    """
    Submit every trackable, unchecked transaction to the pairing model and
    record the verdict.

    Every candidate ends up internal_movement_checked=True, including those
    whose source message is gone (they are not submitted). internal_movement
    is True only for ids the model returned. A failing model call raises
    before anything is written.
    """
    detect = detect or detect_internal_movements
    size = max(1, batch_size or settings.store_write_batch_size)

    q = db.query(Transaction).filter(
        Transaction.should_track.is_(True),
        Transaction.internal_movement_checked.is_(False),
    )
    if target_date:
        q = q.filter(Transaction.transaction_date == target_date)
    candidates = q.order_by(Transaction.transaction_datetime.asc()).all()
    if not candidates:
        logger.info("Internal movements: no unchecked transactions")
        return {"checked": 0, "internal_movements": 0, "pairs": [], "notes": None}

    bodies = _load_bodies(db, [tx.message_id for tx in candidates], size)
    summaries = []
    missing = 0
    for tx in candidates:
        if tx.message_id not in bodies:
            missing += 1
            continue
        summaries.append(_summary(tx, bodies[tx.message_id]))
    if missing:
        logger.warning(f"Internal movements: {missing} transactions have no source message; marking checked only")

    result = detect(summaries)
    submitted = {s["id"] for s in summaries}
    flagged = set(result.internal_movement_ids) & submitted
    reasons: dict[str, str] = {}
    for pair in result.pairs:
        reasons[pair.outgoing_id] = pair.reason
        reasons[pair.incoming_id] = pair.reason

    for i, tx in enumerate(candidates, 1):
        is_internal = tx.id in flagged
        tx.internal_movement = is_internal
        tx.internal_movement_checked = True
        log_event(
            db,
            TRANSACTION,
            tx.id,
            "duplicate_detection_processed",
            {
                "is_internal_movement": is_internal,
                "pair_reason": reasons.get(tx.id),
                "notes": result.notes,
                "target_date": target_date,
            },
        )
        if i % size == 0:
            db.commit()
    db.commit()

    logger.info(
        f"Internal movements: checked={len(candidates)} flagged={len(flagged)} pairs={len(result.pairs)}"
    )
    return {
        "checked": len(candidates),
        "internal_movements": len(flagged),
        "pairs": result.pairs,
        "notes": result.notes,
    }


def reset_internal_movements(
    db: Session,
    *,
    target_date: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> int:
    """Clear both flags so the transactions are evaluated again. Returns the count."""
    size = max(1, batch_size or settings.store_write_batch_size)
    q = db.query(Transaction).filter(Transaction.internal_movement_checked.is_(True))
    if target_date:
        q = q.filter(Transaction.transaction_date == target_date)
    rows = q.all()
    for i, tx in enumerate(rows, 1):
        tx.internal_movement = False
        tx.internal_movement_checked = False
        log_event(db, TRANSACTION, tx.id, "internal_movement_reset", {"target_date": target_date})
        if i % size == 0:
            db.commit()
    db.commit()
    logger.info(f"Internal movements reset for {len(rows)} transactions (date={target_date or 'all'})")
    return len(rows)
