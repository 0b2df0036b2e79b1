# app/services/payment_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.solana_client import ChainRpcError
from app.clients.stripe_gateway import CardGatewayError, CheckoutSession
from app.core.clock import utcnow
from app.core.config import Settings
from app.core.errors import (
    ConflictError,
    UpstreamError,
    ValidationError,
    VerificationError,
    VerificationReason,
)
from app.core.pricing import sol_to_lamports, usd_to_cents
from app.models.enums import EventStage, LifecycleStatus, PaymentMethod, PaymentStatus
from app.models.order import Order
from app.services.audit_service import AuditService
from app.services.notification_service import safe_notify
from app.services.orders_service import OrderService

logger = logging.getLogger(__name__)

# a payment this many times the price is accepted but worth a look
OVERPAYMENT_WARN_FACTOR = 10


@dataclass(frozen=True)
class PaymentConfirmation:
    order_id: str
    status: LifecycleStatus
    confirmations: int
    already_confirmed: bool


class PaymentService:
    """
    Moves an order from pending_payment to payment_confirmed.

    Exactly one caller wins the confirmation (conditional UPDATE); only the
    winner notifies the customer and schedules generation. Every later call
    for a confirmed order is a successful no-op.
    """
    def __init__(
        self,
        settings: Settings,
        orders: OrderService,
        audit: AuditService,
        *,
        chain,
        card_gateway,
        notifier=None,
        on_confirmed: Optional[Callable[[str], object]] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.orders = orders
        self.audit = audit
        self.chain = chain
        self.card_gateway = card_gateway
        self.notifier = notifier
        self.on_confirmed = on_confirmed
        self.now_fn = now_fn

    # ---------------------------
    # ON-CHAIN
    # ---------------------------

    def verify_onchain(self, db: Session, order_id: str, signature: str) -> PaymentConfirmation:
        order = self.orders.get(db, order_id, fresh=True)

        if order.payment_status == PaymentStatus.confirmed.value:
            return self._already_confirmed(order)
        if order.payment_method != PaymentMethod.solana.value:
            raise ValidationError("Order is not payable on-chain.")
        self._require_payable(order)

        try:
            tx = self.chain.lookup_transaction(signature)
        except ChainRpcError as e:
            logger.error("chain lookup failed", extra={"order_id": order_id, "error": str(e)})
            raise UpstreamError(f"Could not reach chain RPC: {e}") from e

        if tx is None:
            raise VerificationError(VerificationReason.NOT_FOUND, "Transaction not found.")
        if not tx.success:
            raise VerificationError(VerificationReason.TRANSACTION_FAILED, "Transaction failed on chain.")
        if tx.sender_address != order.payer_ref:
            logger.warning(
                "payment sender mismatch",
                extra={"order_id": order_id, "expected": order.payer_ref, "actual": tx.sender_address},
            )
            raise VerificationError(VerificationReason.SENDER_MISMATCH, "Transaction sender does not match order wallet.")

        expected = sol_to_lamports(order.payment_amount)
        if tx.lamports_to_treasury < expected:
            logger.warning(
                "payment amount too low",
                extra={"order_id": order_id, "expected": expected, "received": tx.lamports_to_treasury},
            )
            raise VerificationError(
                VerificationReason.AMOUNT_MISMATCH,
                f"Insufficient payment: expected {expected} lamports, received {tx.lamports_to_treasury}.",
            )
        if tx.lamports_to_treasury >= expected * OVERPAYMENT_WARN_FACTOR:
            logger.warning(
                "large overpayment accepted",
                extra={"order_id": order_id, "expected": expected, "received": tx.lamports_to_treasury},
            )

        return self._confirm(
            db,
            order_id,
            reference=tx.signature,
            confirmations=tx.confirmations,
            extra={},
        )

    # ---------------------------
    # CARD
    # ---------------------------

    def start_checkout(self, db: Session, order_id: str) -> CheckoutSession:
        order = self.orders.get(db, order_id)
        if order.payment_method != PaymentMethod.stripe.value:
            raise ValidationError("Order is not payable by card.")
        self._require_payable(order)

        try:
            session = self.card_gateway.create_checkout_session(
                order_id=order.id,
                product_name=f"{order.project_name} ({order.tier})",
                amount_cents=usd_to_cents(order.payment_amount),
                currency=order.payment_currency,
                customer_email=order.customer_email,
                success_url=self.settings.stripe_success_url.format(order_id=order.id),
                cancel_url=self.settings.stripe_cancel_url.format(order_id=order.id),
            )
        except CardGatewayError as e:
            raise UpstreamError(f"Could not start checkout: {e}") from e

        logger.info("checkout session created", extra={"order_id": order_id, "session_id": session.session_id})
        return session

    def confirm_card_payment(
        self,
        db: Session,
        order_id: str,
        *,
        session_id: str,
        payment_intent_id: Optional[str] = None,
    ) -> PaymentConfirmation:
        """
        Trusts the processor: called for a signature-verified completed session.
        """
        order = self.orders.get(db, order_id, fresh=True)
        if order.payment_status == PaymentStatus.confirmed.value:
            return self._already_confirmed(order)
        if order.payment_method != PaymentMethod.stripe.value:
            raise ValidationError("Order is not payable by card.")
        self._require_payable(order)

        values = {}
        if payment_intent_id:
            values["stripe_payment_intent_id"] = payment_intent_id
        return self._confirm(db, order_id, reference=session_id, confirmations=1, extra=values)

    def mark_card_payment_failed(self, db: Session, order_id: str, *, message: str) -> bool:
        """
        Records a declined card payment. The order stays pending_payment so the
        customer can retry checkout.
        """
        ok = self.orders.compare_and_set(
            db,
            order_id,
            expected={
                "payment_status": PaymentStatus.pending,
                "lifecycle_status": LifecycleStatus.pending_payment,
            },
            values={"payment_status": PaymentStatus.failed},
        )
        if ok:
            self.audit.write(db, order_id=order_id, stage=EventStage.payment, message=message)
            db.commit()
            logger.warning("card payment failed", extra={"order_id": order_id, "error": message})
        else:
            db.rollback()
        return ok

    # ---------------------------
    # internals
    # ---------------------------

    def _require_payable(self, order: Order) -> None:
        if order.lifecycle_status != LifecycleStatus.pending_payment.value:
            raise ConflictError(f"Order is {order.lifecycle_status}; payment cannot be confirmed.")
        if order.payment_status not in (PaymentStatus.pending.value, PaymentStatus.failed.value):
            raise ConflictError(f"Payment is {order.payment_status}.")

    def _already_confirmed(self, order: Order) -> PaymentConfirmation:
        return PaymentConfirmation(
            order_id=order.id,
            status=LifecycleStatus(order.lifecycle_status),
            confirmations=order.payment_confirmations,
            already_confirmed=True,
        )

    def _confirm(
        self,
        db: Session,
        order_id: str,
        *,
        reference: str,
        confirmations: int,
        extra: dict,
    ) -> PaymentConfirmation:
        try:
            won = self.orders.compare_and_set(
                db,
                order_id,
                expected={
                    "lifecycle_status": LifecycleStatus.pending_payment,
                    "payment_status": (PaymentStatus.pending, PaymentStatus.failed),
                },
                values={
                    "payment_status": PaymentStatus.confirmed,
                    "payment_reference": reference,
                    "payment_confirmations": confirmations,
                    "lifecycle_status": LifecycleStatus.payment_confirmed,
                    "payment_confirmed_at": self.now_fn(),
                    **extra,
                },
            )
            if won:
                self.audit.write(
                    db,
                    order_id=order_id,
                    stage=EventStage.payment,
                    message="Payment confirmed",
                    details={"reference": reference, "confirmations": confirmations},
                )
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError("Payment reference already used for another order.") from e

        order = self.orders.get(db, order_id, fresh=True)
        if not won:
            if order.payment_status == PaymentStatus.confirmed.value:
                return self._already_confirmed(order)
            raise ConflictError(f"Order is {order.lifecycle_status}; payment cannot be confirmed.")

        logger.info("payment confirmed", extra={"order_id": order_id, "reference": reference})

        if self.notifier is not None:
            safe_notify(self.notifier.send_payment_confirmation, order)
        if self.on_confirmed is not None:
            self.on_confirmed(order_id)

        return PaymentConfirmation(
            order_id=order_id,
            status=LifecycleStatus.payment_confirmed,
            confirmations=confirmations,
            already_confirmed=False,
        )
