from __future__ import annotations

import re

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.rate_limit import InMemoryRateLimiter


class OrderRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies ONLY to order creation and payment verification POSTs.
    Keyed by client IP.
    """

    def __init__(self, app, limiter: InMemoryRateLimiter, api_prefix: str = "/api/v1"):
        super().__init__(app)
        self.limiter = limiter
        prefix = re.escape(api_prefix.rstrip("/"))
        self._paths = re.compile(rf"^{prefix}/orders(/[^/]+/verify)?/?$")

    async def dispatch(self, request: Request, call_next):
        method = request.method.upper()
        path = request.url.path

        if method == "POST" and self._paths.match(path):
            client_ip = request.client.host if request.client else "unknown"
            route_key = "verify" if path.rstrip("/").endswith("/verify") else "create"
            if not self.limiter.allow(client_ip, route_key):
                return JSONResponse(
                    status_code=429,
                    content={
                        "success": False,
                        "error": "rate_limited",
                        "reason": None,
                        "detail": "Too many requests. Please try again later.",
                    },
                    headers={"Retry-After": str(self.limiter.retry_after_seconds())},
                )
        return await call_next(request)
