# app/services/orders_service.py
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, desc, asc
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import Settings
from app.core.errors import NotFoundError
from app.core.lifecycle_graph import assert_transition
from app.core.pricing import currency_for, expected_amount
from app.models.enums import (
    LifecycleStatus,
    PaymentMethod,
    PaymentStatus,
    WhitelistStatus,
)
from app.models.order import Order
from app.schemas.orders import OrderCreateRequest

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(self, settings: Settings):
        self.settings = settings

    # ---------------------------
    # READS
    # ---------------------------

    def get(self, db: Session, order_id: str, *, fresh: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        order = db.execute(stmt).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found.")
        return order

    def get_for_update(self, db: Session, order_id: str) -> Order:
        """
        Lock the order row (FOR UPDATE; a no-op on SQLite) and reload it.
        """
        order = (
            db.execute(
                select(Order)
                .where(Order.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
        if not order:
            raise NotFoundError("Order not found.")
        return order

    def get_by_download_token(self, db: Session, token: str) -> Optional[Order]:
        return db.execute(
            select(Order)
            .where(Order.download_token == token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_orders(
        self,
        db: Session,
        *,
        status: Optional[LifecycleStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Order]:
        stmt = select(Order)
        if status is not None:
            stmt = stmt.where(Order.lifecycle_status == LifecycleStatus(status).value)
        stmt = stmt.order_by(desc(Order.created_at)).limit(limit).offset(offset)
        return list(db.execute(stmt).scalars().all())

    def list_pending_reviews(self, db: Session) -> List[Order]:
        """
        Oldest first, so reviewers work the queue in arrival order.
        """
        return list(
            db.execute(
                select(Order)
                .where(
                    Order.lifecycle_status == LifecycleStatus.review_required.value,
                    Order.whitelist_status == WhitelistStatus.pending.value,
                )
                .order_by(asc(Order.created_at))
            )
            .scalars()
            .all()
        )

    def list_with_downloads(self, db: Session) -> List[Order]:
        return list(
            db.execute(
                select(Order)
                .where(Order.download_token.is_not(None))
                .order_by(desc(Order.created_at))
            )
            .scalars()
            .all()
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def create_order(
        self,
        db: Session,
        req: OrderCreateRequest,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Order:
        currency = currency_for(req.paymentMethod)
        amount = expected_amount(self.settings, req.tier, currency)

        order = Order(
            payer_ref=req.walletAddress.strip(),
            customer_email=req.customerEmail.lower().strip(),
            customer_name=req.customerName,
            telegram_handle=req.telegramHandle,
            project_name=req.projectName,
            project_description=req.projectDescription,
            product_type=req.productType.value,
            tier=req.tier.value,
            token_config=req.tokenConfig.model_dump() if req.tokenConfig else None,
            features=list(req.features),
            payment_method=PaymentMethod(req.paymentMethod).value,
            payment_amount=amount,
            payment_currency=currency.value,
            payment_status=PaymentStatus.pending.value,
            lifecycle_status=LifecycleStatus.pending_payment.value,
            whitelist_status=WhitelistStatus.pending.value,
            max_downloads=self.settings.max_downloads,
            ip_address=(ip_address or "unknown")[:64],
            user_agent=(user_agent or "unknown")[:512],
        )
        db.add(order)
        db.commit()
        db.refresh(order)

        logger.info(
            "order created",
            extra={"order_id": order.id, "tier": order.tier, "amount": str(amount), "currency": currency.value},
        )
        return order

    def compare_and_set(
        self,
        db: Session,
        order_id: str,
        *,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Conditional UPDATE: applies `values` only if every column in `expected`
        still holds the given value (a list/tuple/set means "one of").

        Does not commit. Returns True when exactly this call changed the row.

        A lifecycle change must name its source status(es) in `expected`; each
        source -> target pair is checked against the lifecycle graph first.
        """
        if "lifecycle_status" in values:
            _check_lifecycle_change(expected.get("lifecycle_status"), values["lifecycle_status"])

        conditions = [Order.id == order_id]
        for column, value in expected.items():
            col = getattr(Order, column)
            if isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(col.in_([_raw(v) for v in value]))
            else:
                conditions.append(col == _raw(value))

        values = {k: _raw(v) for k, v in values.items()}
        values.setdefault("updated_at", utcnow())

        result = db.execute(
            update(Order)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def _check_lifecycle_change(sources: Any, target: Any) -> None:
    if sources is None:
        raise ValueError("lifecycle change without an expected source status")
    if not isinstance(sources, (list, tuple, set, frozenset)):
        sources = [sources]
    for source in sources:
        if LifecycleStatus(_raw(source)) != LifecycleStatus(_raw(target)):
            assert_transition(LifecycleStatus(_raw(source)), LifecycleStatus(_raw(target)))


def _raw(value: Any) -> Any:
    # enums are persisted as their string values
    return value.value if isinstance(value, Enum) else value


def download_filename(project_name: str) -> str:
    s = re.sub(r"[^A-Za-z0-9]+", "-", project_name).strip("-").lower()
    return f"{s or 'project'}.zip"
