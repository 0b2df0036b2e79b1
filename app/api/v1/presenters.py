# app/api/v1/presenters.py
from __future__ import annotations

from app.core.clock import as_utc
from app.models.enums import EventStage, LifecycleStatus, PaymentMethod, PaymentStatus, WhitelistStatus
from app.models.order import Order
from app.schemas.admin import DownloadItem, OrderSummary, ReviewItem
from app.schemas.orders import (
    ArtifactView,
    ComplianceView,
    DownloadView,
    EventView,
    FlagView,
    OrderStatusResponse,
    PaymentView,
    TimestampsView,
)
from app.services.download_service import can_download

# successful downloads are counted on the order, not listed
_HIDDEN_EVENT_STAGES = {EventStage.download.value}


def _flags(order: Order):
    return [
        FlagView(category=f.category, severity=f.severity, message=f.message, file=f.file_path, line=f.line)
        for f in order.flags
    ]


def order_status_view(order: Order) -> OrderStatusResponse:
    artifact = None
    if order.has_artifact:
        artifact = ArtifactView(
            files=[f.path for f in order.files],
            packageManifest=order.package_manifest or {},
            totalFiles=order.total_files or 0,
            totalLines=order.total_lines or 0,
        )

    download = None
    if order.has_download:
        download = DownloadView(
            token=order.download_token,
            expiresAt=as_utc(order.download_expires_at),
            downloadCount=order.download_count,
            maxDownloads=order.max_downloads,
            canDownload=can_download(order),
        )

    return OrderStatusResponse(
        orderId=order.id,
        projectName=order.project_name,
        productType=order.product_type,
        tier=order.tier,
        status=LifecycleStatus(order.lifecycle_status),
        payment=PaymentView(
            amount=order.payment_amount,
            currency=order.payment_currency,
            method=PaymentMethod(order.payment_method),
            externalReference=order.payment_reference,
            status=PaymentStatus(order.payment_status),
            confirmations=order.payment_confirmations,
        ),
        compliance=ComplianceView(
            riskScore=order.risk_score,
            flags=_flags(order),
            whitelistStatus=WhitelistStatus(order.whitelist_status),
            reviewedBy=order.reviewed_by,
            reviewedAt=as_utc(order.reviewed_at),
            reviewNotes=order.review_notes,
        ),
        artifact=artifact,
        download=download,
        timestamps=TimestampsView(
            created=as_utc(order.created_at),
            paymentConfirmed=as_utc(order.payment_confirmed_at),
            generationStarted=as_utc(order.generation_started_at),
            generationCompleted=as_utc(order.generation_completed_at),
            approved=as_utc(order.approved_at),
        ),
        errors=[
            EventView(stage=e.stage, message=e.message, timestamp=as_utc(e.created_at))
            for e in order.events
            if e.stage not in _HIDDEN_EVENT_STAGES
        ],
    )


def order_summary(order: Order) -> OrderSummary:
    return OrderSummary(
        orderId=order.id,
        projectName=order.project_name,
        tier=order.tier,
        status=order.lifecycle_status,
        paymentStatus=order.payment_status,
        createdAt=as_utc(order.created_at),
    )


def review_item(order: Order) -> ReviewItem:
    return ReviewItem(
        orderId=order.id,
        projectName=order.project_name,
        projectDescription=order.project_description,
        payer=order.payer_ref,
        riskScore=order.risk_score,
        flags=[f.model_dump() for f in _flags(order)],
        totalFiles=order.total_files or 0,
        totalLines=order.total_lines or 0,
        createdAt=as_utc(order.created_at),
    )


def download_item(order: Order) -> DownloadItem:
    return DownloadItem(
        orderId=order.id,
        projectName=order.project_name,
        productType=order.product_type,
        customerEmail=order.customer_email,
        downloadToken=order.download_token,
        downloadCount=order.download_count,
        maxDownloads=order.max_downloads,
        expiresAt=as_utc(order.download_expires_at),
        canDownload=can_download(order),
        createdAt=as_utc(order.created_at),
        status=order.lifecycle_status,
    )
