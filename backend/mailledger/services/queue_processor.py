"""Claim-based queue processor: unprocessed messages -> classified transactions, under a time budget."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import WORKER_LOST, describe_error, error_category, store_query
from ..job_state_db import (
    RUNNING,
    get_job,
    set_job_completed,
    set_job_failed,
    set_job_running,
    set_job_total,
    update_job_progress,
)
from ..langgraph_pipeline import process_transaction
from ..message_store import (
    claim_message,
    count_unprocessed,
    list_unprocessed,
    mark_processed,
    release_message,
)
from ..models import Message
from ..transaction_store import save_transaction
from .internal_movements import detect_and_flag_internal_movements

logger = logging.getLogger(__name__)

# (subject, body) -> {"classification", "categorization", "time_extraction"}
Analyzer = Callable[[str, str], dict]

WORKER_LOST_ERROR = "Worker stopped before the job finished; start a new run to continue"


@dataclass
class QueueRunResult:
    processed: int
    remaining: int
    timed_out: bool
    total: int = 0
    failed: int = 0
    skipped: int = 0


def process_message(db: Session, message_id: str, analyze: Optional[Analyzer] = None) -> str:
    """
    Claim, analyze and record one message.

    Returns "processed", "skipped" (claimed elsewhere or already done) or
    "failed" (claim released; the message is retried by a later run).
    """
    analyze = analyze or process_transaction
    if not claim_message(db, message_id):
        logger.info(f"Message {message_id}: claimed elsewhere or already processed; skipping")
        return "skipped"

    message = db.get(Message, message_id)
    if message is None:
        logger.warning(f"Message {message_id}: deleted after claim; skipping")
        return "skipped"
    started = time.monotonic()
    try:
        analysis = analyze(message.subject or "", message.body or "")
    except Exception as e:
        logger.warning(f"Message {message_id}: analysis failed - {describe_error(e)}")
        release_message(db, message_id, describe_error(e))
        return "failed"
    duration_ms = int((time.monotonic() - started) * 1000)

    try:
        tx = save_transaction(db, message, analysis, ai_duration_ms=duration_ms)
        mark_processed(db, message, transaction_id=tx.id, should_track=tx.should_track)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Message {message_id}: persist failed - {describe_error(e)}")
        release_message(db, message_id, describe_error(e))
        return "failed"

    logger.info(
        f"Message {message_id}: transaction {tx.id} (should_track={tx.should_track}, {duration_ms}ms)"
    )
    return "processed"


def run_queue_processor(
    db: Session,
    *,
    limit: int,
    start_time: float,
    deadline_s: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    analyze: Optional[Analyzer] = None,
    on_total: Optional[Callable[[int], None]] = None,
    on_progress: Optional[Callable[[int, str], None]] = None,
) -> QueueRunResult:
    """
    Process up to `limit` unprocessed messages, one at a time.

    Before each claim the elapsed time (clock() - start_time) is checked
    against deadline_s; past it, the loop stops and the result is marked
    timed_out. Query failures propagate to the caller; a missing table,
    column or index surfaces as StoreConfigurationError.
    """
    deadline = settings.run_deadline_s if deadline_s is None else deadline_s
    with store_query():
        messages = list_unprocessed(db, limit)
    ids = [m.id for m in messages]
    total = len(ids)
    if on_total:
        on_total(total)

    processed = failed = skipped = 0
    timed_out = False
    for index, message_id in enumerate(ids, 1):
        elapsed = clock() - start_time
        if elapsed >= deadline:
            timed_out = True
            logger.warning(
                f"Time budget reached after {elapsed:.1f}s ({processed}/{total} processed); stopping early"
            )
            break
        if on_progress:
            on_progress(processed, f"Processing batch {index}/{total}")
        outcome = process_message(db, message_id, analyze=analyze)
        if outcome == "processed":
            processed += 1
        elif outcome == "failed":
            failed += 1
        else:
            skipped += 1

    with store_query():
        remaining = count_unprocessed(db)
    return QueueRunResult(
        processed=processed,
        remaining=remaining,
        timed_out=timed_out,
        total=total,
        failed=failed,
        skipped=skipped,
    )


def run_job_processor(
    db: Session,
    job_id: str,
    *,
    clock: Callable[[], float] = time.monotonic,
    analyze: Optional[Analyzer] = None,
    detect: Optional[Callable[[list[dict]], object]] = None,
) -> Optional[QueueRunResult]:
    """
    Drive one ProcessingJob through running -> completed | failed.

    Returns None when the job is missing or no longer pending. A job found
    already running belongs to a worker that died mid-run (the task was
    redelivered), so it is marked failed. Unexpected errors mark the job
    failed and are re-raised.
    """
    start_time = clock()
    if not set_job_running(db, job_id):
        job = get_job(db, job_id)
        if job is not None and job.status == RUNNING:
            logger.error(f"Job {job_id} was left running by a lost worker; marking failed")
            set_job_failed(db, job_id, error=WORKER_LOST_ERROR, error_category=WORKER_LOST)
        else:
            logger.warning(f"Job {job_id} is missing or not pending; not starting")
        return None
    job = get_job(db, job_id)
    limit = int(job.limit or settings.queue_default_batch_size)
    logger.info(f"Job {job_id} started (limit={limit}, trigger={job.trigger})")

    try:
        result = run_queue_processor(
            db,
            limit=limit,
            start_time=start_time,
            clock=clock,
            analyze=analyze,
            on_total=lambda total: set_job_total(db, job_id, total),
            on_progress=lambda done, label: update_job_progress(db, job_id, processed=done, current_item=label),
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Job {job_id} failed: {describe_error(e)}", exc_info=True)
        set_job_failed(db, job_id, error=describe_error(e), error_category=error_category(e))
        raise

    if result.total == 0:
        logger.info(f"Job {job_id}: no_emails_to_process")
    set_job_completed(
        db,
        job_id,
        processed=result.processed,
        remaining=result.remaining,
        timed_out=result.timed_out,
    )
    logger.info(
        f"Job {job_id} completed: processed={result.processed} failed={result.failed} "
        f"remaining={result.remaining} timed_out={result.timed_out} "
        f"duration={clock() - start_time:.1f}s"
    )

    # Pairing needs one more AI call; leave it to the next run when the budget is spent.
    if result.processed and not result.timed_out:
        try:
            detect_and_flag_internal_movements(db, detect=detect)
        except Exception as e:
            db.rollback()
            logger.error(f"Job {job_id}: internal-movement detection failed - {describe_error(e)}")
    return result
