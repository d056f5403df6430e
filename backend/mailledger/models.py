"""SQLAlchemy models."""
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Float,
    Boolean,
    Index,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy import JSON

Base = declarative_base()


class Message(Base):
    """Raw provider notification. Keyed by the provider message id."""
    __tablename__ = "messages"

    id = Column(String, primary_key=True)  # Gmail message id
    subject = Column(String, nullable=True)
    sender = Column(String, nullable=True)
    date = Column(String, nullable=True)  # raw Date header
    body = Column(Text, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow)
    processed = Column(Boolean, default=False, nullable=False, index=True)
    # Claim flag; see message_store.claim_message
    processing = Column(Boolean, default=False, nullable=False)
    processing_started_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    # No FK: the source message may be deleted while the transaction stays.
    message_id = Column(String, unique=True, index=True, nullable=False)
    email_subject = Column(String, nullable=True)

    # Raw structured AI results
    classification = Column(JSON, nullable=True)
    categorization = Column(JSON, nullable=True)
    time_extraction = Column(JSON, nullable=True)

    # Denormalized for querying
    should_track = Column(Boolean, default=False, nullable=False, index=True)
    transaction_type = Column(String, nullable=True)  # purchase, incoming, outgoing, transfer, payment
    amount = Column(Float, nullable=True)
    category = Column(String, nullable=True, index=True)
    subcategory = Column(String, nullable=True)
    transaction_datetime = Column(String, nullable=True, index=True)  # ISO with -05:00 offset
    transaction_date = Column(String, nullable=True, index=True)  # YYYY-MM-DD
    confirmed = Column(Boolean, default=False, nullable=True)

    # Only meaningful once internal_movement_checked is true
    internal_movement = Column(Boolean, default=False, nullable=False)
    internal_movement_checked = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


Index(
    "ix_transactions_unchecked",
    Transaction.should_track,
    Transaction.internal_movement_checked,
)


class ProcessingJob(Base):
    """One queue-processing run: pending -> running -> completed | failed."""
    __tablename__ = "processing_jobs"

    id = Column(String(36), primary_key=True)
    status = Column(String, default="pending", index=True)  # pending, running, completed, failed
    trigger = Column(String, default="manual")  # manual, scheduled, sync
    limit = Column(Integer, default=10)
    processed = Column(Integer, default=0)
    total = Column(Integer, default=0)
    remaining = Column(Integer, nullable=True)
    current_item = Column(String(255), nullable=True)
    timed_out = Column(Boolean, default=False)
    error = Column(Text, nullable=True)
    error_category = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SyncStatus(Base):
    """Singleton sync record (id = "current")."""
    __tablename__ = "sync_status"

    id = Column(String, primary_key=True, default="current")
    status = Column(String, default="idle")  # idle, fetching, processing, completed, failed
    lookback_hours = Column(Integer, nullable=True)
    emails_fetched = Column(Integer, default=0)
    new_emails = Column(Integer, default=0)
    existing_emails = Column(Integer, default=0)
    emails_queued = Column(Integer, default=0)
    emails_processed = Column(Integer, default=0)
    emails_remaining = Column(Integer, default=0)
    job_id = Column(String(36), nullable=True)
    triggered_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_successful_sync_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)
    error_category = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EventLog(Base):
    """Append-only audit trail for messages and transactions."""
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    subject_kind = Column(String, nullable=False)  # message, transaction
    subject_id = Column(String, nullable=False, index=True)
    event = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
