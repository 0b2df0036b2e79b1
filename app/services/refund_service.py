# app/services/refund_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import select, asc
from sqlalchemy.orm import Session

from app.clients.solana_client import ChainRpcError, TransferState
from app.clients.stripe_gateway import CardGatewayError
from app.core.clock import utcnow
from app.core.config import Settings
from app.core.errors import ConflictError, LifecycleError, RefundError
from app.core.lifecycle_graph import assert_transition, sources_of
from app.core.order_locks import KeyedLock
from app.core.pricing import sol_to_lamports, usd_to_cents
from app.models.enums import EventStage, LifecycleStatus, PaymentMethod, PaymentStatus
from app.models.order import Order
from app.services.audit_service import AuditService
from app.services.notification_service import safe_notify
from app.services.orders_service import OrderService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundConfirmation:
    order_id: str
    already_refunded: bool
    reference: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass
class SweepResult:
    scanned: int = 0
    refunded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class RefundService:
    def __init__(
        self,
        settings: Settings,
        orders: OrderService,
        audit: AuditService,
        *,
        chain,
        card_gateway,
        notifier=None,
        locks: KeyedLock,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.orders = orders
        self.audit = audit
        self.chain = chain
        self.card_gateway = card_gateway
        self.notifier = notifier
        self.locks = locks
        self.now_fn = now_fn

    def refund(
        self,
        db: Session,
        order_id: str,
        *,
        reason: str,
        admin_notes: Optional[str] = None,
    ) -> RefundConfirmation:
        """
        Returns the confirmed payment to the payer.

        Idempotent: an order already refunded is reported as such without a
        second transfer. Concurrent calls for one order are serialised on a
        per-order lock, and the state write is conditional on the payment still
        being confirmed.

        On-chain refunds record their signature before it is sent. A retry
        re-checks that signature and only signs a new transfer once the old one
        has failed or expired.
        """
        with self.locks.hold(order_id):
            order = self.orders.get_for_update(db, order_id)

            if order.payment_status == PaymentStatus.refunded.value:
                db.rollback()
                logger.info("refund skipped; already refunded", extra={"order_id": order_id})
                return RefundConfirmation(order_id=order_id, already_refunded=True)

            if order.payment_status != PaymentStatus.confirmed.value:
                db.rollback()
                raise ConflictError("Payment not confirmed, cannot refund.")

            assert_transition(LifecycleStatus(order.lifecycle_status), LifecycleStatus.refunded)

            amount = order.payment_amount
            try:
                if order.payment_method == PaymentMethod.solana.value:
                    reference = self._issue_onchain(db, order)
                else:
                    reference = self._issue_card(order, reason)
            except (ChainRpcError, CardGatewayError, ValueError) as e:
                db.rollback()
                logger.error("refund transfer failed", extra={"order_id": order_id, "error": str(e)})
                raise RefundError(f"Refund failed: {e}") from e

            ok = self.orders.compare_and_set(
                db,
                order_id,
                expected={
                    "payment_status": PaymentStatus.confirmed,
                    "lifecycle_status": sources_of(LifecycleStatus.refunded),
                },
                values={
                    "payment_status": PaymentStatus.refunded,
                    "lifecycle_status": LifecycleStatus.refunded,
                    "refund_reference": reference,
                },
            )
            if not ok:
                # money has moved; keep the trail even though the row changed underneath us
                logger.critical(
                    "refund sent but order changed concurrently",
                    extra={"order_id": order_id, "reference": reference},
                )

            self.audit.write(
                db,
                order_id=order_id,
                stage=EventStage.refund,
                message=f"Refund processed: {reason}",
                details={"reference": reference, "amount": str(amount), "admin_notes": admin_notes},
            )
            db.commit()

        logger.info("refund processed", extra={"order_id": order_id, "reference": reference})

        if self.notifier is not None:
            safe_notify(self.notifier.send_refund, self.orders.get(db, order_id, fresh=True), reason)

        return RefundConfirmation(
            order_id=order_id,
            already_refunded=False,
            reference=reference,
            amount=amount,
        )

    def _issue_onchain(self, db: Session, order: Order) -> str:
        if order.refund_reference:
            state = self.chain.transfer_state(order.refund_reference, order.refund_valid_until)
            if state == TransferState.confirmed:
                logger.info(
                    "earlier refund transfer confirmed",
                    extra={"order_id": order.id, "signature": order.refund_reference},
                )
                return order.refund_reference
            if state == TransferState.pending:
                raise ChainRpcError(f"refund transfer {order.refund_reference} still pending")
            logger.warning(
                "earlier refund transfer did not land; signing a new one",
                extra={"order_id": order.id, "signature": order.refund_reference, "state": state.value},
            )

        prepared = self.chain.prepare_transfer(order.payer_ref, sol_to_lamports(order.payment_amount))
        recorded = self.orders.compare_and_set(
            db,
            order.id,
            expected={
                "payment_status": PaymentStatus.confirmed,
                "refund_reference": order.refund_reference,
            },
            values={
                "refund_reference": prepared.signature,
                "refund_valid_until": prepared.last_valid_block_height,
            },
        )
        if not recorded:
            raise ChainRpcError("order changed before the refund could be sent")
        # durable before the transfer is sent
        db.commit()

        self.chain.submit_transfer(prepared)
        state = self.chain.await_transfer(prepared.signature, prepared.last_valid_block_height)
        if state != TransferState.confirmed:
            raise ChainRpcError(f"refund transfer {prepared.signature} {state.value}")

        # the commit above released the row; take it again for the final write
        self.orders.get_for_update(db, order.id)
        return prepared.signature

    def _issue_card(self, order: Order, reason: str) -> str:
        if not order.stripe_payment_intent_id:
            raise CardGatewayError("no payment intent recorded for card order")
        return self.card_gateway.refund(
            payment_intent_id=order.stripe_payment_intent_id,
            amount_cents=usd_to_cents(order.payment_amount),
            reason=reason,
        )

    def process_auto_refunds(self, db: Session) -> SweepResult:
        """
        Refunds every order that failed after payment and has sat longer than
        the grace window. One failing order does not stop the sweep.
        """
        cutoff = self.now_fn() - timedelta(hours=self.settings.auto_refund_after_hours)
        ids = list(
            db.execute(
                select(Order.id)
                .where(
                    Order.lifecycle_status == LifecycleStatus.failed.value,
                    Order.payment_status == PaymentStatus.confirmed.value,
                    Order.created_at < cutoff,
                )
                .order_by(asc(Order.created_at))
            )
            .scalars()
            .all()
        )
        db.commit()

        result = SweepResult(scanned=len(ids))
        for order_id in ids:
            try:
                self.refund(db, order_id, reason="Automatic refund for failed generation")
                result.refunded.append(order_id)
            except LifecycleError as e:
                db.rollback()
                logger.error("auto refund failed", extra={"order_id": order_id, "error": e.message})
                result.failed.append(order_id)
            except Exception:
                db.rollback()
                logger.exception("auto refund crashed", extra={"order_id": order_id})
                result.failed.append(order_id)

        logger.info(
            "auto refund sweep finished",
            extra={"scanned": result.scanned, "refunded": len(result.refunded), "failed": len(result.failed)},
        )
        return result
