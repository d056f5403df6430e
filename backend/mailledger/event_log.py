"""Append-only per-record event trail (event_logs table)."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from .models import EventLog

MESSAGE = "message"
TRANSACTION = "transaction"


def log_event(
    db: Session,
    subject_kind: str,
    subject_id: str,
    event: str,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Stage an event row. The caller's commit persists it with the change it describes."""
    db.add(
        EventLog(
            subject_kind=subject_kind,
            subject_id=subject_id,
            event=event,
            details=details or {},
            created_at=datetime.utcnow(),
        )
    )


def get_events(db: Session, subject_kind: str, subject_id: str) -> list[EventLog]:
    return (
        db.query(EventLog)
        .filter(EventLog.subject_kind == subject_kind, EventLog.subject_id == subject_id)
        .order_by(EventLog.id.asc())
        .all()
    )
