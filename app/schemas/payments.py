from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from app.models.enums import LifecycleStatus


class PaymentConfirmationResponse(BaseModel):
    success: bool = True
    orderId: str
    status: LifecycleStatus
    confirmations: int = 0
    alreadyConfirmed: bool = False
    message: str = "Payment confirmed"


class CheckoutResponse(BaseModel):
    success: bool = True
    orderId: str
    sessionId: str
    url: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
    eventType: str
