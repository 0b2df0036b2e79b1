#app/core/auth_deps.py
from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from app.core.security import decode_token
from app.models.enums import AdminRole
from app.policies.rbac import Principal, require_action

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical admin authentication dependency.

    Guarantees:
    - JWT is valid and unexpired
    - sub and role are present
    - role is a valid AdminRole
    """

    try:
        payload = decode_token(creds.credentials, settings=request.app.state.settings)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    subject = payload.get("sub")
    role = payload.get("role")
    display_name = payload.get("display_name") or subject

    if not subject or not role:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = AdminRole(role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    principal = Principal(
        subject=str(subject),
        role=role_enum,
        display_name=str(display_name),
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal


def require(action: str) -> Callable[..., Principal]:
    """
    Dependency factory: authenticated principal allowed to perform `action`.
    """

    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        try:
            require_action(principal, action)
        except PermissionError as e:
            raise HTTPException(status_code=403, detail=str(e))
        return principal

    return _dep
