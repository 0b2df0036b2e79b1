from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

logger = logging.getLogger(__name__)


class CardGatewayError(Exception):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: Optional[str]


class StripeGateway:
    """
    Card payments through Stripe Checkout.

    The API key is passed per call instead of mutating the module-global
    `stripe.api_key`, so several gateways (or tests) can coexist.
    """
    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str]):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    def _require_key(self) -> str:
        if not self.secret_key:
            raise CardGatewayError("STRIPE_SECRET_KEY not configured")
        return self.secret_key

    def create_checkout_session(
        self,
        *,
        order_id: str,
        product_name: str,
        amount_cents: int,
        currency: str,
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self._require_key(),
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": product_name},
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=customer_email,
                metadata={"orderId": order_id},
                payment_intent_data={"metadata": {"orderId": order_id}},
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            raise CardGatewayError(str(e)) from e
        return CheckoutSession(session_id=session.id, url=getattr(session, "url", None))

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """Raises ValueError on bad payload / signature."""
        if not self.webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET not configured")
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError("invalid Stripe signature") from e
        # signature verified; hand back plain dicts rather than StripeObjects
        return json.loads(payload)

    def refund(self, *, payment_intent_id: str, amount_cents: int, reason: str) -> str:
        try:
            refund = stripe.Refund.create(
                api_key=self._require_key(),
                payment_intent=payment_intent_id,
                amount=amount_cents,
                metadata={"reason": reason[:500]},
            )
        except stripe.StripeError as e:
            raise CardGatewayError(str(e)) from e
        logger.info("stripe refund created", extra={"refund_id": refund.id, "payment_intent": payment_intent_id})
        return refund.id
