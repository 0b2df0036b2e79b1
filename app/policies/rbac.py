#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Set

from app.models.enums import AdminRole


@dataclass(frozen=True)
class Principal:
    subject: str
    role: AdminRole
    display_name: str


# --- Admin action constants ---
ACTION_VIEW_ORDERS = "VIEW_ORDERS"
ACTION_RESOLVE_REVIEW = "RESOLVE_REVIEW"
ACTION_REFUND = "REFUND"
ACTION_RUN_SWEEP = "RUN_SWEEP"


def allowed_actions(role: AdminRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    """

    if role == AdminRole.ADMIN:
        return {ACTION_VIEW_ORDERS, ACTION_RESOLVE_REVIEW, ACTION_REFUND, ACTION_RUN_SWEEP}

    if role == AdminRole.REVIEWER:
        return {ACTION_VIEW_ORDERS, ACTION_RESOLVE_REVIEW}

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise PermissionError(
            f"Role {principal.role.value} not permitted for action {action}."
        )
