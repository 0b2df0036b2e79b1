# app/core/lifecycle_graph.py
from __future__ import annotations

from app.core.errors import ConflictError
from app.models.enums import LifecycleStatus as S

TERMINAL_STATES = frozenset({S.failed, S.refunded})

ALLOWED_LIFECYCLE_TRANSITIONS = {
    S.pending_payment: {S.payment_confirmed, S.failed},

    S.payment_confirmed: {S.generating, S.failed, S.refunded},

    S.generating: {S.review_required, S.approved, S.failed, S.refunded},

    S.review_required: {S.approved, S.failed, S.refunded},

    S.approved: {S.completed, S.failed, S.refunded},

    S.completed: {S.refunded},

    # refund path only
    S.failed: {S.refunded},

    S.refunded: set(),
}


def can_transition(current: S, target: S) -> bool:
    return target in ALLOWED_LIFECYCLE_TRANSITIONS[S(current)]


def assert_transition(current: S, target: S) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"Illegal lifecycle transition {S(current).value} -> {S(target).value}."
        )


def sources_of(target: S) -> frozenset:
    """Every status the graph allows to move into `target`."""
    return frozenset(s for s, nxt in ALLOWED_LIFECYCLE_TRANSITIONS.items() if S(target) in nxt)
