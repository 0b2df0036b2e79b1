#app/models/order.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    String,
    Text,
    DateTime,
    Integer,
    Numeric,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import (
    LifecycleStatus,
    PaymentStatus,
    WhitelistStatus,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex}"


class Order(Base):
    """
    Aggregate root: one row per customer submission.

    Mutated only through the lifecycle services; never deleted.
    """
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(40), primary_key=True, default=new_order_id)

    # Payer: wallet address (solana) or processor customer reference (stripe)
    payer_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    telegram_handle: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # ─────────── project spec ───────────
    project_name: Mapped[str] = mapped_column(String(200), nullable=False)
    project_description: Mapped[str] = mapped_column(Text, nullable=False)
    product_type: Mapped[str] = mapped_column(String(16), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    token_config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    features: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # ─────────── payment ───────────
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    payment_currency: Mapped[str] = mapped_column(String(8), nullable=False)
    # tx signature or checkout session id; one reference pays for one order only
    payment_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PaymentStatus.pending.value
    )
    payment_confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # refund tx signature (signed before sending) or processor refund id
    refund_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # block height after which an unseen refund signature can no longer land
    refund_valid_until: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    lifecycle_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=LifecycleStatus.pending_payment.value
    )

    # ─────────── generated artifact (summary; files in order_files) ───────────
    package_manifest: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    readme: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_files: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_lines: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # ─────────── compliance (flags in compliance_flags) ───────────
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    whitelist_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=WhitelistStatus.pending.value
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ─────────── download gate ───────────
    download_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    zip_location: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    download_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    last_downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ─────────── named instants (set once) ───────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    payment_confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    generation_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    generation_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    # ─────────── analytics / request context ───────────
    generation_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tokens_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="unknown")

    files = relationship(
        "OrderFile",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderFile.position",
    )
    flags = relationship(
        "ComplianceFlag",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ComplianceFlag.id",
    )
    events = relationship(
        "OrderEvent",
        back_populates="order",
        order_by="OrderEvent.id",
    )

    __table_args__ = (
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_orders_risk_score_range"),
        CheckConstraint("download_count >= 0", name="ck_orders_download_count_nonnegative"),
        CheckConstraint("download_count <= max_downloads", name="ck_orders_download_count_cap"),
        Index("ix_orders_status_created", "lifecycle_status", "created_at"),
        Index("ix_orders_payer_created", "payer_ref", "created_at"),
    )

    @property
    def has_artifact(self) -> bool:
        return self.total_files is not None

    @property
    def has_download(self) -> bool:
        return self.download_token is not None
