"""ProcessingJob state machine and lookup."""
from datetime import datetime, timedelta

from mailledger.job_state_db import (
    create_job,
    get_job,
    job_message,
    resolve_job,
    set_job_completed,
    set_job_failed,
    set_job_running,
    update_job_progress,
)


def _job(db, status, created_at):
    job = create_job(db, limit=10)
    job.status = status
    job.created_at = created_at
    db.commit()
    return job


def test_resolve_prefers_active_jobs(db_session):
    base = datetime(2026, 1, 4, 12, 0)
    running = _job(db_session, "running", base)
    _job(db_session, "completed", base + timedelta(minutes=5))
    assert resolve_job(db_session).id == running.id


def test_resolve_falls_back_to_newest(db_session):
    base = datetime(2026, 1, 4, 12, 0)
    _job(db_session, "failed", base)
    newest = _job(db_session, "completed", base + timedelta(minutes=5))
    assert resolve_job(db_session).id == newest.id
    assert resolve_job(db_session, "missing") is None


def test_terminal_jobs_are_immutable(db_session):
    job = create_job(db_session, limit=5)
    assert set_job_running(db_session, job.id) is True
    update_job_progress(db_session, job.id, processed=2, current_item="Processing batch 3/5")
    set_job_completed(db_session, job.id, processed=5, remaining=0)

    set_job_failed(db_session, job.id, error="late failure")
    update_job_progress(db_session, job.id, processed=1)
    assert set_job_running(db_session, job.id) is False

    job = get_job(db_session, job.id)
    assert job.status == "completed"
    assert job.processed == 5
    assert job.error is None
    assert job.current_item is None


def test_status_messages(db_session):
    job = create_job(db_session, limit=5)
    assert job_message(job) == "Job is queued and waiting to start"
    set_job_running(db_session, job.id)
    update_job_progress(db_session, job.id, processed=2)
    assert job_message(get_job(db_session, job.id)) == "Processing in progress. 2 emails completed so far."
    set_job_completed(db_session, job.id, processed=4, remaining=7, timed_out=True)
    text = job_message(get_job(db_session, job.id))
    assert text.startswith("Processing finished. 4 emails processed, 7 remaining.")
    assert "time limit" in text
