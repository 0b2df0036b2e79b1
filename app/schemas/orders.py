from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, constr, conint

from app.models.enums import (
    LifecycleStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
    ServiceTier,
    WhitelistStatus,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class TokenConfig(BaseModel):
    name: constr(min_length=1, max_length=64)
    symbol: constr(min_length=1, max_length=16)
    decimals: conint(ge=0, le=18) = 9
    totalSupply: conint(gt=0)


class OrderCreateRequest(BaseModel):
    """
    Customer submission. The amount is never taken from the client;
    it is derived from the tier price table.
    """
    walletAddress: constr(min_length=1, max_length=128) = Field(
        ..., description="Payer wallet address (solana) or customer reference (stripe)"
    )
    customerName: constr(min_length=1, max_length=200)
    customerEmail: constr(pattern=EMAIL_PATTERN, max_length=320)
    telegramHandle: Optional[constr(max_length=64)] = None
    projectName: constr(min_length=1, max_length=200)
    projectDescription: constr(min_length=1, max_length=10000)
    productType: ProductType
    tier: ServiceTier
    paymentMethod: PaymentMethod = PaymentMethod.solana
    tokenConfig: Optional[TokenConfig] = None
    features: List[constr(min_length=1, max_length=200)] = Field(default_factory=list)


class OrderCreateResponse(BaseModel):
    success: bool = True
    orderId: str
    paymentAmount: Decimal
    currency: str
    paymentMethod: PaymentMethod
    treasuryWallet: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    transactionSignature: constr(min_length=1, max_length=128)


class PaymentView(BaseModel):
    amount: Decimal
    currency: str
    method: PaymentMethod
    externalReference: Optional[str] = None
    status: PaymentStatus
    confirmations: int = 0


class FlagView(BaseModel):
    category: str
    severity: str
    message: str
    file: Optional[str] = None
    line: Optional[int] = None


class ComplianceView(BaseModel):
    riskScore: int
    flags: List[FlagView] = Field(default_factory=list)
    whitelistStatus: WhitelistStatus
    reviewedBy: Optional[str] = None
    reviewedAt: Optional[datetime] = None
    reviewNotes: Optional[str] = None


class ArtifactView(BaseModel):
    files: List[str]
    packageManifest: Dict[str, Any] = Field(default_factory=dict)
    totalFiles: int
    totalLines: int


class DownloadView(BaseModel):
    token: str
    expiresAt: datetime
    downloadCount: int
    maxDownloads: int
    canDownload: bool


class EventView(BaseModel):
    stage: str
    message: str
    timestamp: datetime


class TimestampsView(BaseModel):
    created: datetime
    paymentConfirmed: Optional[datetime] = None
    generationStarted: Optional[datetime] = None
    generationCompleted: Optional[datetime] = None
    approved: Optional[datetime] = None


class OrderStatusResponse(BaseModel):
    success: bool = True
    orderId: str
    projectName: str
    productType: str
    tier: str
    status: LifecycleStatus
    payment: PaymentView
    compliance: ComplianceView
    artifact: Optional[ArtifactView] = None
    download: Optional[DownloadView] = None
    timestamps: TimestampsView
    errors: List[EventView] = Field(default_factory=list)


class TransitionResponse(BaseModel):
    success: bool = True
    orderId: str
    status: LifecycleStatus
    message: Optional[str] = None
