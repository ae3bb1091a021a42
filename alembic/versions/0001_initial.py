"""Initial schema for the reminder engine

Creates the read-only order/customer mirrors plus the reminder, notification
log and generic notification tables.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_customer_customer_id", "customer", ["customer_id"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="received"),
        sa.Column("return_method", sa.String(length=30), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Numeric(scale=2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(scale=2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("actual_completion", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_completed_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_completion", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_order_id", "orders", ["order_id"], unique=True)
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])

    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reminder_id", sa.String(length=40), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("reminder_type", sa.String(length=30), nullable=False),  # 7_days, 14_days, ...
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("channel", sa.String(length=20), nullable=True),
        sa.Column("sent_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.String(length=40), nullable=True),
        sa.Column("message_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_reminders_reminder_id", "reminders", ["reminder_id"], unique=True)
    op.create_index("ix_reminders_order_id", "reminders", ["order_id"])
    op.create_index("ix_reminders_status_scheduled", "reminders", ["status", "scheduled_date"])

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("channel", sa.String(length=40), nullable=False),
        sa.Column("recipient_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_phone", sa.String(length=32), nullable=True),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("reminder_id", sa.String(length=40), nullable=True),
        sa.Column("whatsapp_success", sa.Boolean(), nullable=True),
        sa.Column("email_success", sa.Boolean(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_log_timestamp", "notification_log", ["timestamp"])
    # dedup lookup: latest payment_reminder per order
    op.create_index(
        "ix_notification_log_order_type_ts",
        "notification_log",
        ["order_id", "type", "timestamp"],
    )

    op.create_table(
        "generic_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recipient_id", sa.String(length=64), nullable=True),
        sa.Column("recipient_phone", sa.String(length=32), nullable=True),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("template_name", sa.String(length=80), nullable=True),
        sa.Column("template_params", sa.JSON(), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("html", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_generic_notifications_status_next",
        "generic_notifications",
        ["status", "next_retry_time"],
    )


def downgrade() -> None:
    op.drop_index("ix_generic_notifications_status_next", table_name="generic_notifications")
    op.drop_table("generic_notifications")
    op.drop_index("ix_notification_log_order_type_ts", table_name="notification_log")
    op.drop_index("ix_notification_log_timestamp", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_index("ix_reminders_status_scheduled", table_name="reminders")
    op.drop_index("ix_reminders_order_id", table_name="reminders")
    op.drop_index("ix_reminders_reminder_id", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_orders_customer_id", table_name="orders")
    op.drop_index("ix_orders_order_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_customer_customer_id", table_name="customer")
    op.drop_table("customer")
