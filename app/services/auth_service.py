# app/services/auth_service.py
import hmac
import logging
from typing import Optional

from app.core.config import Settings
from app.core.security import verify_password
from app.models.enums import AdminRole
from app.policies.rbac import Principal

logger = logging.getLogger(__name__)


def authenticate(settings: Settings, username: str, password: str) -> Optional[Principal]:
    """
    Single operator account configured through ADMIN_USERNAME / ADMIN_PASSWORD_HASH.
    """
    if not settings.admin_password_hash:
        logger.warning("admin login attempted but ADMIN_PASSWORD_HASH is not set")
        return None

    if not hmac.compare_digest(username.encode("utf-8"), settings.admin_username.encode("utf-8")):
        return None

    if not verify_password(password, settings.admin_password_hash):
        logger.warning("admin login failed", extra={"username": username})
        return None

    return Principal(
        subject=settings.admin_username,
        role=AdminRole.ADMIN,
        display_name=settings.admin_username,
    )
