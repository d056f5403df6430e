"""Lookback window, single-flight guard, capture + completion inference."""
from datetime import datetime

import pytest
from unittest.mock import MagicMock

from mailledger.models import Message, ProcessingJob, SyncStatus
from mailledger.services import sync_orchestrator as so
from mailledger.sync_state_db import get_state_from_db, set_sync_processing, try_begin_sync


def test_lookback_from_month_start_when_never_synced():
    now = datetime(2026, 1, 3, 10, 30)
    # 2 days 10.5 hours -> 59 hours (rounded up) + 6
    assert so.compute_lookback_hours(now, None) == 59 + 6


def test_lookback_from_last_sync():
    now = datetime(2026, 1, 3, 10, 0)
    assert so.compute_lookback_hours(now, datetime(2026, 1, 3, 7, 59)) == 3 + 6
    assert so.compute_lookback_hours(now, datetime(2026, 1, 3, 10, 0)) == 6
    assert so.compute_lookback_hours(now, datetime(2026, 1, 3, 11, 0), extra_hours=2) == 2


def test_second_trigger_is_refused_while_busy(db_session):
    assert try_begin_sync(db_session) is True
    assert try_begin_sync(db_session) is False
    set_sync_processing(db_session, fetched=1, new=1, existing=0, remaining=1)
    assert try_begin_sync(db_session) is False


def _gmail_message(mid, subject="Compra aprobada", body_b64="Q29tcHJhIEVYSVRP"):
    return {
        "id": mid,
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": "alertas@davivienda.com"},
                {"name": "Date", "value": "Sat, 03 Jan 2026 23:26:40 +0000"},
            ],
            "body": {"data": body_b64},
        },
    }


def test_run_sync_captures_and_infers_completion(db_session, add_message, monkeypatch):
    add_message("old", processed=True)
    monkeypatch.setattr(so.settings, "sync_auto_process", True)
    monkeypatch.setattr(so, "list_message_ids", lambda service, label, after_ts: ["old", "new1", "new2"])
    monkeypatch.setattr(so, "get_full_message", lambda service, mid: _gmail_message(mid))
    dispatched = []

    assert try_begin_sync(db_session) is True
    result = so.run_sync(
        db_session, service=MagicMock(), now=datetime(2026, 1, 4, 0, 0), on_job_created=dispatched.append
    )

    assert (result["fetched"], result["new"], result["existing"]) == (3, 2, 1)
    assert db_session.get(Message, "old").processed is True
    assert db_session.get(Message, "new1").body == "Compra EXITO"
    assert db_session.get(Message, "new1").received_at == datetime(2026, 1, 3, 23, 26, 40)
    assert dispatched == [result["job_id"]]
    assert db_session.get(ProcessingJob, result["job_id"]).trigger == "sync"

    state = get_state_from_db(db_session)
    assert state["status"] == "processing"
    assert (state["emails_queued"], state["emails_remaining"], state["emails_processed"]) == (2, 2, 0)
    assert state["lookback_hours"] == 72 + 6
    assert state["last_successful_sync_at"] is not None

    for mid in ("new1", "new2"):
        db_session.get(Message, mid).processed = True
    db_session.commit()

    state = get_state_from_db(db_session)
    assert state["status"] == "completed"
    assert state["emails_processed"] == 2
    assert state["emails_remaining"] == 0


def test_run_sync_with_nothing_new_completes(db_session, monkeypatch):
    monkeypatch.setattr(so, "list_message_ids", lambda service, label, after_ts: [])
    try_begin_sync(db_session)
    result = so.run_sync(db_session, service=MagicMock())
    assert result["status"] == "completed"
    assert get_state_from_db(db_session)["status"] == "completed"


def test_run_sync_failure_is_recorded(db_session, monkeypatch):
    def broken(service, label, after_ts):
        raise RuntimeError("Gmail unavailable")

    monkeypatch.setattr(so, "list_message_ids", broken)
    try_begin_sync(db_session)
    with pytest.raises(RuntimeError):
        so.run_sync(db_session, service=MagicMock())

    row = db_session.get(SyncStatus, "current")
    assert row.status == "failed"
    assert row.error == "Gmail unavailable"
    assert row.error_category == "unexpected"
    # Failed syncs release the guard
    assert try_begin_sync(db_session) is True


def test_idle_state_without_record(db_session):
    assert get_state_from_db(db_session)["status"] == "idle"
