#app/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.auth_deps import get_current_principal
from app.core.deps import get_container
from app.core.errors import AuthError
from app.core.security import token_for
from app.policies.rbac import Principal
from app.schemas.admin import AdminLoginRequest, AdminLoginResponse
from app.services.auth_service import authenticate
from app.services.container import ServiceContainer

router = APIRouter(prefix="/auth")


@router.post("/login", response_model=AdminLoginResponse)
def login(
    req: AdminLoginRequest,
    services: ServiceContainer = Depends(get_container),
):
    principal = authenticate(services.settings, req.username, req.password)
    if not principal:
        raise AuthError("Invalid credentials.")

    return AdminLoginResponse(access_token=token_for(principal, settings=services.settings))


@router.get("/me")
def get_me(principal: Principal = Depends(get_current_principal)):
    return {
        "subject": principal.subject,
        "role": principal.role.value,
        "display_name": principal.display_name,
    }
