#app/models/enums.py
from __future__ import annotations
from enum import Enum


class AdminRole(str, Enum):
    ADMIN = "ADMIN"
    REVIEWER = "REVIEWER"


class LifecycleStatus(str, Enum):
    pending_payment = "pending_payment"
    payment_confirmed = "payment_confirmed"
    generating = "generating"
    review_required = "review_required"
    approved = "approved"
    completed = "completed"
    # terminal
    failed = "failed"
    refunded = "refunded"


class PaymentStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    solana = "solana"
    stripe = "stripe"


class Currency(str, Enum):
    SOL = "SOL"
    USD = "USD"


class ProductType(str, Enum):
    app_only = "app-only"
    token_only = "token-only"
    bundle = "bundle"


class ServiceTier(str, Enum):
    starter = "starter"
    professional = "professional"
    enterprise = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [ServiceTier.starter, ServiceTier.professional, ServiceTier.enterprise]


class WhitelistStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class FlagSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class FlagCategory(str, Enum):
    security = "security"
    legal = "legal"
    content = "content"


class EventStage(str, Enum):
    payment = "payment"
    generation = "generation"
    review = "review"
    packaging = "packaging"
    download = "download"
    refund = "refund"
    notification = "notification"


class ReviewDecision(str, Enum):
    approve = "approve"
    reject = "reject"
