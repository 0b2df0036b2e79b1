# app/api/v1/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.deps import client_ip, get_container
from app.core.errors import ConflictError
from app.db.session import get_db
from app.models.enums import LifecycleStatus, PaymentMethod
from app.schemas.orders import (
    OrderCreateRequest,
    OrderCreateResponse,
    OrderStatusResponse,
    TransitionResponse,
    VerifyPaymentRequest,
)
from app.schemas.payments import CheckoutResponse, PaymentConfirmationResponse
from app.services.container import ServiceContainer
from app.api.v1.presenters import order_status_view

router = APIRouter(prefix="/orders")


# ---------------------------------------------------------------------
# POST /orders  (customer submission)
# ---------------------------------------------------------------------


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    request: Request,
    payload: OrderCreateRequest,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    order = services.orders.create_order(
        db,
        payload,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    treasury = None
    if order.payment_method == PaymentMethod.solana.value:
        treasury = services.settings.solana_treasury_wallet

    return OrderCreateResponse(
        orderId=order.id,
        paymentAmount=order.payment_amount,
        currency=order.payment_currency,
        paymentMethod=PaymentMethod(order.payment_method),
        treasuryWallet=treasury,
    )


# ---------------------------------------------------------------------
# GET /orders/{order_id}
# ---------------------------------------------------------------------


@router.get("/{order_id}", response_model=OrderStatusResponse)
def get_order_status(
    order_id: str,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    order = services.orders.get(db, order_id, fresh=True)
    return order_status_view(order)


# ---------------------------------------------------------------------
# POST /orders/{order_id}/verify  (on-chain payment)
# ---------------------------------------------------------------------


@router.post("/{order_id}/verify", response_model=PaymentConfirmationResponse)
def verify_payment(
    order_id: str,
    payload: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    result = services.payments.verify_onchain(db, order_id, payload.transactionSignature)
    return PaymentConfirmationResponse(
        orderId=result.order_id,
        status=result.status,
        confirmations=result.confirmations,
        alreadyConfirmed=result.already_confirmed,
        message="Payment already confirmed" if result.already_confirmed else "Payment confirmed",
    )


# ---------------------------------------------------------------------
# POST /orders/{order_id}/checkout  (card payment)
# ---------------------------------------------------------------------


@router.post("/{order_id}/checkout", response_model=CheckoutResponse)
def start_checkout(
    order_id: str,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    session = services.payments.start_checkout(db, order_id)
    return CheckoutResponse(orderId=order_id, sessionId=session.session_id, url=session.url)


# ---------------------------------------------------------------------
# POST /orders/{order_id}/generate  (manual trigger)
# ---------------------------------------------------------------------


@router.post("/{order_id}/generate", response_model=TransitionResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_generation(
    order_id: str,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    """
    Payment confirmation already schedules generation; this endpoint exists
    for retries after a lost worker. Runs inline when no queue is configured.
    """
    order = services.orders.get(db, order_id, fresh=True)
    if order.lifecycle_status != LifecycleStatus.payment_confirmed.value:
        raise ConflictError(f"Generation not allowed from {order.lifecycle_status}.")

    if services.queue is None:
        order = services.generation.generate(db, order_id)
        return TransitionResponse(orderId=order_id, status=LifecycleStatus(order.lifecycle_status))

    if not services.queue.submit(order_id):
        raise ConflictError("Generation already in progress.")
    return TransitionResponse(
        orderId=order_id,
        status=LifecycleStatus(order.lifecycle_status),
        message="Generation queued",
    )
