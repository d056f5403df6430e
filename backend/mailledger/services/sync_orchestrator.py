"""Sync: adaptive lookback window, fetch from Gmail, capture into the message store, hand off to the queue."""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import describe_error, error_category, store_query
from ..gmail_service import (
    email_to_parts,
    get_full_message,
    get_gmail_service,
    list_message_ids,
    parse_received_date,
)
from ..job_state_db import create_job
from ..message_store import count_unprocessed, upsert_message
from ..sync_state_db import (
    get_sync_row,
    set_sync_completed,
    set_sync_failed,
    set_sync_job,
    set_sync_lookback,
    set_sync_processing,
)

logger = logging.getLogger(__name__)


def compute_lookback_hours(
    now: datetime,
    last_successful_sync_at: Optional[datetime],
    extra_hours: Optional[int] = None,
) -> int:
    """
    Hours to look back: since the last successful sync, or since the start of
    the current month when there is none, rounded up, plus a fixed buffer.
    All datetimes are naive UTC.
    """
    extra = settings.sync_extra_hours if extra_hours is None else extra_hours
    since = last_successful_sync_at or now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    hours = math.ceil(max(0.0, (now - since).total_seconds()) / 3600)
    return int(hours) + int(extra)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def run_sync(
    db: Session,
    *,
    service=None,
    now: Optional[datetime] = None,
    on_job_created: Optional[Callable[[str], None]] = None,
) -> dict:
    """
    Fetch and capture messages for a sync already moved to "fetching"
    (see sync_state_db.try_begin_sync). Failures are written to the sync
    record and re-raised.
    """
    now = now or datetime.utcnow()
    try:
        row = get_sync_row(db)
        last_sync = row.last_successful_sync_at if row else None
        lookback = compute_lookback_hours(now, last_sync)
        set_sync_lookback(db, lookback)
        after_ts = int((now - timedelta(hours=lookback)).replace(tzinfo=timezone.utc).timestamp())
        logger.info(f"Sync: lookback={lookback}h (last sync {last_sync or 'never'}), after={after_ts}")

        service = service or get_gmail_service()
        ids = list_message_ids(service, settings.target_label, after_ts)
        if not ids:
            set_sync_completed(db)
            logger.info("Sync: no messages in window")
            return {"status": "completed", "fetched": 0, "new": 0, "existing": 0, "remaining": 0}

        new = existing = 0
        for i, mid in enumerate(ids, 1):
            raw = get_full_message(service, mid)
            message_id, subject, sender, date_header, body = email_to_parts(raw)
            is_new = upsert_message(
                db,
                message_id=message_id or mid,
                subject=subject,
                sender=sender,
                date=date_header,
                body=body,
                received_at=_to_naive_utc(parse_received_date(date_header)),
            )
            if is_new:
                new += 1
            else:
                existing += 1
            if i % 25 == 0:
                logger.info(f"Sync: captured {i}/{len(ids)}")

        with store_query():
            remaining = count_unprocessed(db)
        set_sync_processing(db, fetched=len(ids), new=new, existing=existing, remaining=remaining)
        logger.info(f"Sync: fetched={len(ids)} new={new} existing={existing} remaining={remaining}")

        job_id = None
        if settings.sync_auto_process and remaining > 0:
            job = create_job(db, limit=settings.queue_default_batch_size, trigger="sync")
            job_id = job.id
            set_sync_job(db, job_id)
            if on_job_created:
                on_job_created(job_id)
        return {
            "status": "processing",
            "fetched": len(ids),
            "new": new,
            "existing": existing,
            "remaining": remaining,
            "job_id": job_id,
        }
    except Exception as e:
        db.rollback()
        logger.error(f"Sync failed: {describe_error(e)}", exc_info=True)
        set_sync_failed(db, describe_error(e), error_category(e))
        raise
