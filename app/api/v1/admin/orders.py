# app/api/v1/admin/orders.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.presenters import download_item, order_status_view, order_summary, review_item
from app.core.auth_deps import require
from app.core.deps import get_container
from app.db.session import get_db
from app.models.enums import LifecycleStatus
from app.policies.rbac import (
    ACTION_REFUND,
    ACTION_RESOLVE_REVIEW,
    ACTION_RUN_SWEEP,
    ACTION_VIEW_ORDERS,
    Principal,
)
from app.schemas.admin import (
    DownloadListResponse,
    OrderListResponse,
    RefundRequest,
    RefundResponse,
    ReviewListResponse,
    ReviewResolutionRequest,
    SweepResponse,
)
from app.schemas.orders import OrderStatusResponse
from app.services.container import ServiceContainer

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------
# orders
# ---------------------------------------------------------------------


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    status: Optional[LifecycleStatus] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_VIEW_ORDERS)),
):
    orders = services.orders.list_orders(db, status=status, limit=limit, offset=offset)
    return OrderListResponse(orders=[order_summary(o) for o in orders], total=len(orders))


@router.get("/orders/{order_id}", response_model=OrderStatusResponse)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_VIEW_ORDERS)),
):
    return order_status_view(services.orders.get(db, order_id, fresh=True))


# ---------------------------------------------------------------------
# reviews
# ---------------------------------------------------------------------


@router.get("/reviews", response_model=ReviewListResponse)
def list_pending_reviews(
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_VIEW_ORDERS)),
):
    orders = services.orders.list_pending_reviews(db)
    return ReviewListResponse(reviews=[review_item(o) for o in orders], count=len(orders))


@router.post("/reviews/{order_id}", response_model=OrderStatusResponse)
def resolve_review(
    order_id: str,
    payload: ReviewResolutionRequest,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_RESOLVE_REVIEW)),
):
    order = services.generation.resolve_review(
        db,
        order_id,
        decision=payload.decision,
        reviewer=principal.subject,
        notes=payload.reviewNotes,
    )
    return order_status_view(order)


# ---------------------------------------------------------------------
# downloads
# ---------------------------------------------------------------------


@router.get("/downloads", response_model=DownloadListResponse)
def list_downloads(
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_VIEW_ORDERS)),
):
    orders = services.orders.list_with_downloads(db)
    return DownloadListResponse(downloads=[download_item(o) for o in orders], total=len(orders))


# ---------------------------------------------------------------------
# refunds
# ---------------------------------------------------------------------


@router.post("/orders/{order_id}/refund", response_model=RefundResponse)
def refund_order(
    order_id: str,
    payload: RefundRequest,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_REFUND)),
):
    result = services.refunds.refund(
        db,
        order_id,
        reason=payload.reason,
        admin_notes=payload.adminNotes or f"manual refund by {principal.subject}",
    )
    return RefundResponse(
        orderId=result.order_id,
        alreadyRefunded=result.already_refunded,
        reference=result.reference,
    )


@router.post("/refunds/sweep", response_model=SweepResponse)
def run_refund_sweep(
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
    principal: Principal = Depends(require(ACTION_RUN_SWEEP)),
):
    result = services.refunds.process_auto_refunds(db)
    return SweepResponse(scanned=result.scanned, refunded=result.refunded, failed=result.failed)
