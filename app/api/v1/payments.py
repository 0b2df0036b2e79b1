# app/api/v1/payments.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.deps import get_container
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.session import get_db
from app.schemas.payments import WebhookAck
from app.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments")


def _order_id(obj: Dict[str, Any]) -> str:
    return ((obj.get("metadata") or {}).get("orderId") or "").strip()


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhook", response_model=WebhookAck)
def stripe_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: str = Header(default="", alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    """
    Stripe webhook. The raw body is needed for signature verification.

    Events for unknown or already-settled orders are acknowledged (200) so
    Stripe stops retrying; collaborator outages surface as 5xx and are retried.
    """
    try:
        event = services.collaborators.card_gateway.construct_event(payload, stripe_signature)
    except ValueError as e:
        logger.warning("stripe webhook rejected", extra={"error": str(e)})
        raise ValidationError("Invalid webhook signature.")

    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    order_id = _order_id(obj)
    handled = False

    try:
        if event_type == "checkout.session.completed" and order_id:
            if obj.get("payment_status", "paid") == "paid":
                services.payments.confirm_card_payment(
                    db,
                    order_id,
                    session_id=obj.get("id"),
                    payment_intent_id=obj.get("payment_intent"),
                )
                handled = True

        elif event_type == "payment_intent.succeeded" and order_id:
            services.payments.confirm_card_payment(
                db,
                order_id,
                session_id=obj.get("id"),
                payment_intent_id=obj.get("id"),
            )
            handled = True

        elif event_type == "payment_intent.payment_failed" and order_id:
            error = (obj.get("last_payment_error") or {}).get("message") or "Card payment failed"
            handled = services.payments.mark_card_payment_failed(db, order_id, message=error)

        else:
            logger.info("stripe event ignored", extra={"event_type": event_type})

    except (NotFoundError, ConflictError, ValidationError) as e:
        logger.warning(
            "stripe event not applied",
            extra={"event_type": event_type, "order_id": order_id, "error": e.message},
        )

    return WebhookAck(handled=handled, eventType=event_type)
