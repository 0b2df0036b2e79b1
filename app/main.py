import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.v1.router import v1_router
from app.core.config import Settings, get_settings
from app.core.errors import LifecycleError
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware
from app.core.middleware_rate_limit import OrderRateLimitMiddleware
from app.core.rate_limit import InMemoryRateLimiter
from app.db.session import SessionLocal
from app.services.container import Collaborators, ServiceContainer, build_collaborators

logger = logging.getLogger(__name__)


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request failed",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
            "error_code": exc.code,
            "reason": exc.reason,
            "detail": exc.message,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation_error",
            "reason": None,
            "detail": [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()
            ],
        },
    )


def create_app(
    collaborators: Optional[Collaborators] = None,
    *,
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    run_generation_in_background: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    container = ServiceContainer(
        settings,
        collaborators or build_collaborators(settings),
        session_factory or SessionLocal,
        run_generation_in_background=run_generation_in_background,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        container.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container
    app.state.rate_limiter = InMemoryRateLimiter.per_minute(
        settings.rate_limit_capacity, settings.rate_limit_per_minute
    )

    app.add_exception_handler(LifecycleError, lifecycle_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Middleware: rate limit runs inside request-id (last added runs first)
    app.add_middleware(
        OrderRateLimitMiddleware,
        limiter=app.state.rate_limiter,
        api_prefix=settings.api_prefix,
    )
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
