# app/api/v1/downloads.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.clock import as_utc
from app.core.deps import client_ip, get_container, request_id
from app.db.session import get_db
from app.schemas.downloads import DownloadStatusResponse
from app.services.container import ServiceContainer
from app.services.download_service import can_download

router = APIRouter(prefix="/downloads")


@router.get("/{token}")
def download_package(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    payload = services.downloads.consume(
        db,
        token,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return Response(
        content=payload.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{payload.filename}"',
            "X-Downloads-Remaining": str(payload.max_downloads - payload.download_count),
            "Cache-Control": "no-store",
        },
    )


@router.get("/{token}/status", response_model=DownloadStatusResponse)
def download_status(
    token: str,
    db: Session = Depends(get_db),
    services: ServiceContainer = Depends(get_container),
):
    order = services.downloads.status(db, token)
    return DownloadStatusResponse(
        orderId=order.id,
        canDownload=can_download(order),
        downloadCount=order.download_count,
        maxDownloads=order.max_downloads,
        expiresAt=as_utc(order.download_expires_at),
    )
