"""record refund transfer reference

Revision ID: 0002_refund_reference
Revises: 0001_order_lifecycle
Create Date: 2026-10-20
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_refund_reference"
down_revision = "0001_order_lifecycle"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("orders") as batch:
        batch.add_column(sa.Column("refund_reference", sa.String(length=128), nullable=True))
        batch.add_column(sa.Column("refund_valid_until", sa.BigInteger(), nullable=True))


def downgrade():
    with op.batch_alter_table("orders") as batch:
        batch.drop_column("refund_valid_until")
        batch.drop_column("refund_reference")
