# app/services/download_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.errors import DownloadError, DownloadReason
from app.models.enums import EventStage, LifecycleStatus
from app.models.order import Order
from app.services.audit_service import AuditService
from app.services.orders_service import OrderService, download_filename
from app.services.packaging_service import Packager, PackagingError

logger = logging.getLogger(__name__)


def can_download(order: Order, now: Optional[datetime] = None) -> bool:
    """
    Pure check: count below the cap and the expiry still in the future.
    """
    if order.download_token is None or order.download_expires_at is None:
        return False
    now = now or utcnow()
    return order.download_count < order.max_downloads and as_utc(order.download_expires_at) > now


@dataclass(frozen=True)
class DownloadPayload:
    order_id: str
    filename: str
    content: bytes
    download_count: int
    max_downloads: int


class DownloadService:
    def __init__(
        self,
        orders: OrderService,
        packager: Packager,
        audit: AuditService,
        *,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.orders = orders
        self.packager = packager
        self.audit = audit
        self.now_fn = now_fn

    def status(self, db: Session, token: str) -> Order:
        order = self.orders.get_by_download_token(db, token)
        if order is None:
            raise DownloadError(DownloadReason.NOT_FOUND, "Download link not found.")
        return order

    def consume(
        self,
        db: Session,
        token: str,
        *,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> DownloadPayload:
        """
        Counts one download and returns the archive.

        The count is incremented by a single conditional UPDATE, so concurrent
        requests can never push it past max_downloads. A request that loses
        that race is told why (expired or limit reached).
        """
        order = self.status(db, token)
        if order.lifecycle_status != LifecycleStatus.completed.value or not order.zip_location:
            raise DownloadError(DownloadReason.NOT_FOUND, "Download is no longer available.")

        try:
            content = self.packager.read(order.zip_location)
        except PackagingError:
            logger.error("package file missing", extra={"order_id": order.id})
            raise DownloadError(DownloadReason.NOT_FOUND, "Package file not found.")

        order_id = order.id
        filename = download_filename(order.project_name)
        # the read above must not hold a transaction open across the write
        db.commit()

        now = self.now_fn()
        result = db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.download_token == token,
                Order.lifecycle_status == LifecycleStatus.completed.value,
                Order.download_count < Order.max_downloads,
                Order.download_expires_at > now,
            )
            .values(
                download_count=Order.download_count + 1,
                last_downloaded_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            db.rollback()
            current = self.orders.get(db, order_id, fresh=True)
            if as_utc(current.download_expires_at) <= now:
                raise DownloadError(DownloadReason.EXPIRED, "Download link has expired.")
            if current.download_count >= current.max_downloads:
                raise DownloadError(DownloadReason.LIMIT_REACHED, "Download limit reached.")
            raise DownloadError(DownloadReason.NOT_FOUND, "Download is no longer available.")

        self.audit.write(
            db,
            order_id=order_id,
            stage=EventStage.download,
            message="Package downloaded",
            request_id=request_id,
            ip_address=ip_address,
        )
        db.commit()

        current = self.orders.get(db, order_id, fresh=True)
        logger.info(
            "download served",
            extra={"order_id": order_id, "download_count": current.download_count, "ip": ip_address},
        )
        return DownloadPayload(
            order_id=order_id,
            filename=filename,
            content=content,
            download_count=current.download_count,
            max_downloads=current.max_downloads,
        )
