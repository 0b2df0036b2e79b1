from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, constr

from app.models.enums import ReviewDecision


class AdminLoginRequest(BaseModel):
    username: constr(min_length=1, max_length=128)
    password: constr(min_length=1, max_length=256)


class AdminLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ReviewResolutionRequest(BaseModel):
    decision: ReviewDecision
    reviewNotes: Optional[constr(max_length=5000)] = None


class ReviewItem(BaseModel):
    orderId: str
    projectName: str
    projectDescription: str
    payer: str
    riskScore: int
    flags: List[dict] = Field(default_factory=list)
    totalFiles: int = 0
    totalLines: int = 0
    createdAt: datetime


class ReviewListResponse(BaseModel):
    success: bool = True
    reviews: List[ReviewItem]
    count: int


class OrderSummary(BaseModel):
    orderId: str
    projectName: str
    tier: str
    status: str
    paymentStatus: str
    createdAt: datetime


class OrderListResponse(BaseModel):
    success: bool = True
    orders: List[OrderSummary]
    total: int


class DownloadItem(BaseModel):
    orderId: str
    projectName: str
    productType: str
    customerEmail: Optional[str] = None
    downloadToken: str
    downloadCount: int
    maxDownloads: int
    expiresAt: datetime
    canDownload: bool
    createdAt: datetime
    status: str


class DownloadListResponse(BaseModel):
    success: bool = True
    downloads: List[DownloadItem]
    total: int


class RefundRequest(BaseModel):
    reason: constr(min_length=1, max_length=500)
    adminNotes: Optional[constr(max_length=5000)] = None


class RefundResponse(BaseModel):
    success: bool = True
    orderId: str
    alreadyRefunded: bool = False
    reference: Optional[str] = None


class SweepResponse(BaseModel):
    success: bool = True
    scanned: int
    refunded: List[str]
    failed: List[str]
