"""Initial schema: messages, transactions, processing_jobs, sync_status, event_logs.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "messages" not in existing:
        op.create_table(
            "messages",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("subject", sa.String(), nullable=True),
            sa.Column("sender", sa.String(), nullable=True),
            sa.Column("date", sa.String(), nullable=True),
            sa.Column("body", sa.Text(), nullable=True),
            sa.Column("received_at", sa.DateTime(), nullable=True),
            sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("processing", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("processing_started_at", sa.DateTime(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_messages_processed"), "messages", ["processed"], unique=False)

    if "transactions" not in existing:
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("message_id", sa.String(), nullable=False),
            sa.Column("email_subject", sa.String(), nullable=True),
            sa.Column("classification", sa.JSON(), nullable=True),
            sa.Column("categorization", sa.JSON(), nullable=True),
            sa.Column("time_extraction", sa.JSON(), nullable=True),
            sa.Column("should_track", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("transaction_type", sa.String(), nullable=True),
            sa.Column("amount", sa.Float(), nullable=True),
            sa.Column("category", sa.String(), nullable=True),
            sa.Column("subcategory", sa.String(), nullable=True),
            sa.Column("transaction_datetime", sa.String(), nullable=True),
            sa.Column("transaction_date", sa.String(), nullable=True),
            sa.Column("confirmed", sa.Boolean(), nullable=True),
            sa.Column("internal_movement", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("internal_movement_checked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_transactions_message_id"), "transactions", ["message_id"], unique=True)
        op.create_index(op.f("ix_transactions_should_track"), "transactions", ["should_track"], unique=False)
        op.create_index(op.f("ix_transactions_category"), "transactions", ["category"], unique=False)
        op.create_index(
            op.f("ix_transactions_transaction_datetime"), "transactions", ["transaction_datetime"], unique=False
        )
        op.create_index(op.f("ix_transactions_transaction_date"), "transactions", ["transaction_date"], unique=False)
        op.create_index(
            "ix_transactions_unchecked", "transactions", ["should_track", "internal_movement_checked"], unique=False
        )

    if "processing_jobs" not in existing:
        op.create_table(
            "processing_jobs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("trigger", sa.String(), nullable=True),
            sa.Column("limit", sa.Integer(), nullable=True),
            sa.Column("processed", sa.Integer(), nullable=True),
            sa.Column("total", sa.Integer(), nullable=True),
            sa.Column("remaining", sa.Integer(), nullable=True),
            sa.Column("current_item", sa.String(length=255), nullable=True),
            sa.Column("timed_out", sa.Boolean(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("error_category", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_processing_jobs_status"), "processing_jobs", ["status"], unique=False)
        op.create_index(op.f("ix_processing_jobs_created_at"), "processing_jobs", ["created_at"], unique=False)

    if "sync_status" not in existing:
        op.create_table(
            "sync_status",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("lookback_hours", sa.Integer(), nullable=True),
            sa.Column("emails_fetched", sa.Integer(), nullable=True),
            sa.Column("new_emails", sa.Integer(), nullable=True),
            sa.Column("existing_emails", sa.Integer(), nullable=True),
            sa.Column("emails_queued", sa.Integer(), nullable=True),
            sa.Column("emails_processed", sa.Integer(), nullable=True),
            sa.Column("emails_remaining", sa.Integer(), nullable=True),
            sa.Column("job_id", sa.String(length=36), nullable=True),
            sa.Column("triggered_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("last_successful_sync_at", sa.DateTime(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("error_category", sa.String(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "event_logs" not in existing:
        op.create_table(
            "event_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("subject_kind", sa.String(), nullable=False),
            sa.Column("subject_id", sa.String(), nullable=False),
            sa.Column("event", sa.String(), nullable=False),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_event_logs_id"), "event_logs", ["id"], unique=False)
        op.create_index(op.f("ix_event_logs_subject_id"), "event_logs", ["subject_id"], unique=False)


def downgrade() -> None:
    op.drop_table("event_logs")
    op.drop_table("sync_status")
    op.drop_table("processing_jobs")
    op.drop_table("transactions")
    op.drop_table("messages")
