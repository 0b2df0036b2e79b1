import pytest

from app.core.errors import ConflictError
from app.core.lifecycle_graph import (
    ALLOWED_LIFECYCLE_TRANSITIONS,
    TERMINAL_STATES,
    assert_transition,
    can_transition,
    sources_of,
)
from app.models.enums import LifecycleStatus as S, PaymentStatus


def test_every_state_has_an_entry():
    assert set(ALLOWED_LIFECYCLE_TRANSITIONS) == set(S)


def test_happy_path_is_allowed():
    path = [S.pending_payment, S.payment_confirmed, S.generating, S.approved, S.completed]
    for current, target in zip(path, path[1:]):
        assert can_transition(current, target)


def test_review_path_is_allowed():
    assert can_transition(S.generating, S.review_required)
    assert can_transition(S.review_required, S.approved)
    assert can_transition(S.review_required, S.failed)


def test_refunded_is_terminal():
    assert ALLOWED_LIFECYCLE_TRANSITIONS[S.refunded] == set()
    assert S.refunded in TERMINAL_STATES


@pytest.mark.parametrize(
    "current,target",
    [
        (S.pending_payment, S.generating),
        (S.pending_payment, S.refunded),
        (S.completed, S.generating),
        (S.failed, S.generating),
        (S.refunded, S.payment_confirmed),
    ],
)
def test_illegal_transitions_raise_conflict(current, target):
    assert not can_transition(current, target)
    with pytest.raises(ConflictError):
        assert_transition(current, target)


def test_accepts_raw_status_strings():
    assert can_transition("failed", S.refunded)


def test_refund_sources():
    assert sources_of(S.refunded) == {
        S.payment_confirmed, S.generating, S.review_required, S.approved, S.completed, S.failed,
    }
    assert sources_of(S.pending_payment) == frozenset()


def test_compare_and_set_rejects_illegal_lifecycle_change(db, services, completed_order):
    order = completed_order()

    with pytest.raises(ConflictError):
        services.orders.compare_and_set(
            db,
            order.id,
            expected={"lifecycle_status": S.completed},
            values={"lifecycle_status": S.generating},
        )
    db.rollback()

    assert services.orders.get(db, order.id, fresh=True).lifecycle_status == S.completed.value


def test_compare_and_set_needs_a_source_for_lifecycle_changes(db, services, paid_order):
    order = paid_order()

    with pytest.raises(ValueError):
        services.orders.compare_and_set(
            db,
            order.id,
            expected={"payment_status": PaymentStatus.confirmed},
            values={"lifecycle_status": S.failed},
        )
