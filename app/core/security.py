# app/core/security.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from passlib.context import CryptContext

from app.core.config import Settings, get_settings
from app.policies.rbac import Principal

# pbkdf2 keeps passlib free of the bcrypt backend
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(raw: str) -> str:
    return pwd_context.hash(raw)


def verify_password(raw: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(raw, hashed)
    except ValueError:
        # malformed / unknown hash format in configuration
        return False


def create_access_token(
    subject: str,
    claims: Dict[str, Any],
    *,
    settings: Optional[Settings] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.jwt_access_token_minutes)
    payload = {
        **claims,
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def token_for(principal: Principal, *, settings: Optional[Settings] = None) -> str:
    return create_access_token(
        principal.subject,
        {"role": principal.role.value, "display_name": principal.display_name},
        settings=settings,
    )


def decode_token(token: str, *, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Raises jose.JWTError on a bad signature, malformed token or expiry."""
    settings = settings or get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
