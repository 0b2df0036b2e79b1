from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.auth import router as auth_router

# CUSTOMER
from app.api.v1.orders import router as orders_router
from app.api.v1.payments import router as payments_router
from app.api.v1.downloads import router as downloads_router

# OPERATORS
from app.api.v1.admin.orders import router as admin_orders_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(auth_router, tags=["auth"])

# ------------------------------------------------------------------
# ORDER LIFECYCLE
# ------------------------------------------------------------------
v1_router.include_router(orders_router, tags=["orders"])
v1_router.include_router(payments_router, tags=["payments"])
v1_router.include_router(downloads_router, tags=["downloads"])

# ------------------------------------------------------------------
# ADMIN
# ------------------------------------------------------------------
v1_router.include_router(admin_orders_router, tags=["admin"])
