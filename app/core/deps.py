# /app/core/deps.py
from typing import Optional

from fastapi import Request

from app.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def client_ip(request: Request) -> str:
    """
    First hop of X-Forwarded-For when behind a proxy, else the socket peer.
    """
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()[:64]
    return request.client.host if request.client else "unknown"


def request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)
