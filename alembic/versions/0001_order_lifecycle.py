"""order lifecycle tables

Revision ID: 0001_order_lifecycle
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_order_lifecycle"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=40), primary_key=True, nullable=False),

        sa.Column("payer_ref", sa.String(length=128), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("customer_name", sa.String(length=200), nullable=True),
        sa.Column("telegram_handle", sa.String(length=64), nullable=True),

        sa.Column("project_name", sa.String(length=200), nullable=False),
        sa.Column("project_description", sa.Text(), nullable=False),
        sa.Column("product_type", sa.String(length=16), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("token_config", sa.JSON(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=False),

        sa.Column("payment_method", sa.String(length=16), nullable=False),
        sa.Column("payment_amount", sa.Numeric(20, 9), nullable=False),
        sa.Column("payment_currency", sa.String(length=8), nullable=False),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("payment_confirmations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stripe_payment_intent_id", sa.String(length=128), nullable=True),

        sa.Column("lifecycle_status", sa.String(length=32), nullable=False, server_default="pending_payment"),

        sa.Column("package_manifest", sa.JSON(), nullable=True),
        sa.Column("readme", sa.Text(), nullable=True),
        sa.Column("total_files", sa.Integer(), nullable=True),
        sa.Column("total_lines", sa.Integer(), nullable=True),

        sa.Column("risk_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("whitelist_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),

        sa.Column("download_token", sa.String(length=64), nullable=True),
        sa.Column("zip_location", sa.String(length=512), nullable=True),
        sa.Column("download_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_downloads", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("last_downloaded_at", sa.DateTime(timezone=True), nullable=True),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generation_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.Column("generation_time_ms", sa.Integer(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default="unknown"),
        sa.Column("user_agent", sa.String(length=512), nullable=False, server_default="unknown"),

        sa.UniqueConstraint("payment_reference", name="uq_orders_payment_reference"),
        sa.UniqueConstraint("download_token", name="uq_orders_download_token"),
        sa.CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_orders_risk_score_range"),
        sa.CheckConstraint("download_count >= 0", name="ck_orders_download_count_nonnegative"),
        sa.CheckConstraint("download_count <= max_downloads", name="ck_orders_download_count_cap"),
    )
    op.create_index("ix_orders_payer_ref", "orders", ["payer_ref"])
    op.create_index("ix_orders_status_created", "orders", ["lifecycle_status", "created_at"])
    op.create_index("ix_orders_payer_created", "orders", ["payer_ref", "created_at"])

    op.create_table(
        "order_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(length=40), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("path", sa.String(length=512), nullable=False),
        sa.Column("language", sa.String(length=32), nullable=False, server_default="text"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.UniqueConstraint("order_id", "path", name="uq_order_files_order_path"),
    )
    op.create_index("ix_order_files_order_id", "order_files", ["order_id"])

    op.create_table(
        "compliance_flags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(length=40), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False, server_default="security"),
        sa.Column("severity", sa.String(length=8), nullable=False),
        sa.Column("message", sa.String(length=512), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=True),
        sa.Column("line", sa.Integer(), nullable=True),
    )
    op.create_index("ix_compliance_flags_order_id", "compliance_flags", ["order_id"])

    op.create_table(
        "order_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(length=40), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("stack", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_order_events_order_stage", "order_events", ["order_id", "stage"])
    op.create_index("ix_order_events_created_at", "order_events", ["created_at"])


def downgrade():
    op.drop_index("ix_order_events_created_at", table_name="order_events")
    op.drop_index("ix_order_events_order_stage", table_name="order_events")
    op.drop_table("order_events")

    op.drop_index("ix_compliance_flags_order_id", table_name="compliance_flags")
    op.drop_table("compliance_flags")

    op.drop_index("ix_order_files_order_id", table_name="order_files")
    op.drop_table("order_files")

    op.drop_index("ix_orders_payer_created", table_name="orders")
    op.drop_index("ix_orders_status_created", table_name="orders")
    op.drop_index("ix_orders_payer_ref", table_name="orders")
    op.drop_table("orders")
