from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class DownloadStatusResponse(BaseModel):
    success: bool = True
    orderId: str
    canDownload: bool
    downloadCount: int
    maxDownloads: int
    expiresAt: datetime
