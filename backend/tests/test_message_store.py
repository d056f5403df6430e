"""Capture idempotency and processing-claim semantics."""
from datetime import datetime, timedelta

from mailledger.event_log import MESSAGE, get_events
from mailledger.message_store import (
    claim_message,
    count_unprocessed,
    list_unprocessed,
    release_message,
    unprocess_all,
    upsert_message,
)
from mailledger.models import Message, Transaction
from mailledger.services.queue_processor import process_message


def _upsert(db, mid="m1", subject="Compra aprobada", body="Compra por $12.000"):
    return upsert_message(
        db,
        message_id=mid,
        subject=subject,
        sender="alertas@davivienda.com",
        date="Sat, 03 Jan 2026 23:26:40 +0000",
        body=body,
    )


def test_upsert_new_then_existing(db_session):
    assert _upsert(db_session) is True
    assert _upsert(db_session, subject="Compra aprobada (2)") is False

    row = db_session.get(Message, "m1")
    assert row.subject == "Compra aprobada (2)"
    assert db_session.query(Message).count() == 1
    events = [e.event for e in get_events(db_session, MESSAGE, "m1")]
    assert events == ["email_received", "email_updated"]


def test_resubmitting_processed_message_keeps_it_processed(db_session, make_analysis):
    _upsert(db_session)
    assert process_message(db_session, "m1", analyze=lambda s, b: make_analysis()) == "processed"

    assert _upsert(db_session) is False
    row = db_session.get(Message, "m1")
    assert row.processed is True
    assert row.processing is False
    # Nothing to claim, so no second transaction
    assert process_message(db_session, "m1", analyze=lambda s, b: make_analysis()) == "skipped"
    assert db_session.query(Transaction).count() == 1


def test_only_one_of_two_concurrent_claims_wins(session_factory, add_message):
    add_message("m1")
    first, second = session_factory(), session_factory()
    try:
        now = datetime(2026, 1, 4, 12, 0, 0)
        results = [claim_message(first, "m1", now=now), claim_message(second, "m1", now=now)]
    finally:
        first.close()
        second.close()
    assert sorted(results) == [False, True]


def test_fresh_claim_is_respected(db_session, add_message):
    started = datetime(2026, 1, 4, 12, 0, 0)
    add_message("m1", processing=True, processing_started_at=started)
    assert claim_message(db_session, "m1", now=started + timedelta(minutes=5)) is False


def test_stale_claim_is_reclaimed(db_session, add_message):
    started = datetime(2026, 1, 4, 12, 0, 0)
    add_message("m1", processing=True, processing_started_at=started)

    later = started + timedelta(minutes=16)
    assert claim_message(db_session, "m1", now=later) is True
    row = db_session.get(Message, "m1")
    assert row.processing is True
    assert row.processing_started_at == later

    started_events = [e for e in get_events(db_session, MESSAGE, "m1") if e.event == "processing_started"]
    assert started_events[-1].details["lock_expired_and_reclaimed"] is True


def test_processed_message_is_never_claimed(db_session, add_message):
    add_message("m1", processed=True)
    assert claim_message(db_session, "m1") is False


def test_release_clears_claim(db_session, add_message):
    add_message("m1")
    assert claim_message(db_session, "m1") is True
    release_message(db_session, "m1", "timeout")

    row = db_session.get(Message, "m1")
    assert row.processing is False
    assert row.processing_started_at is None
    assert row.processed is False
    released = [e for e in get_events(db_session, MESSAGE, "m1") if e.event == "processing_released"]
    assert released[0].details == {"reason": "error_during_processing", "error": "timeout"}


def test_unprocess_all_flushes_in_batches(db_session, add_message):
    for i in range(5):
        add_message(f"m{i}", processed=True)
    add_message("fresh")

    assert unprocess_all(db_session, batch_size=2) == 5
    assert count_unprocessed(db_session) == 6
    assert len(list_unprocessed(db_session, limit=4)) == 4
