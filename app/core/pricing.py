from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from app.core.config import Settings
from app.models.enums import Currency, PaymentMethod, ServiceTier

LAMPORTS_PER_SOL = 1_000_000_000


def currency_for(method: PaymentMethod) -> Currency:
    return Currency.SOL if method == PaymentMethod.solana else Currency.USD


def expected_amount(settings: Settings, tier: ServiceTier, currency: Currency) -> Decimal:
    """
    Price of a service tier. Product type does not change the price.
    """
    prefix = "price_sol_" if currency == Currency.SOL else "price_usd_"
    return Decimal(getattr(settings, prefix + ServiceTier(tier).value))


def sol_to_lamports(amount: Decimal) -> int:
    return int((Decimal(amount) * LAMPORTS_PER_SOL).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def usd_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
