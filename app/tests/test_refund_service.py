import threading
from datetime import timedelta

import pytest

from app.clients.generator_client import GeneratorError
from app.clients.solana_client import TransferState
from app.core.clock import utcnow
from app.core.errors import ConflictError, GenerationError, RefundError
from app.models.enums import EventStage, LifecycleStatus, PaymentMethod, PaymentStatus
from app.models.order_event import OrderEvent


def _age(db, services, order_id, hours):
    services.orders.compare_and_set(
        db,
        order_id,
        expected={},
        values={"created_at": utcnow() - timedelta(hours=hours)},
    )
    db.commit()


def _failed_paid_order(db, services, fakes, paid_order, signature):
    fakes.generator.error = GeneratorError("boom")
    order = paid_order(signature=signature)
    with pytest.raises(GenerationError):
        services.generation.generate(db, order.id)
    fakes.generator.error = None
    return order


def test_refund_completed_order(db, services, fakes, completed_order, payer):
    order = completed_order()

    result = services.refunds.refund(db, order.id, reason="customer request", admin_notes="ticket 12")

    assert result.already_refunded is False
    assert result.reference == "refund-sig-1"
    assert fakes.chain.transfers == [(payer, 100_000_000)]
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.refunded.value
    assert o.lifecycle_status == LifecycleStatus.refunded.value
    event = db.query(OrderEvent).filter(OrderEvent.stage == EventStage.refund.value).one()
    assert event.message == "Refund processed: customer request"
    assert event.details_json["admin_notes"] == "ticket 12"


def test_refund_twice_transfers_once(db, services, fakes, paid_order):
    order = paid_order()

    services.refunds.refund(db, order.id, reason="first")
    again = services.refunds.refund(db, order.id, reason="second")

    assert again.already_refunded is True
    assert len(fakes.chain.transfers) == 1
    assert fakes.notifier.sent.count(("refund", order.id)) == 1


def test_concurrent_refunds_transfer_once(db, services, fakes, paid_order, session_factory):
    order = paid_order()
    results = []
    barrier = threading.Barrier(5)

    def worker():
        s = session_factory()
        try:
            barrier.wait()
            results.append(services.refunds.refund(s, order.id, reason="race"))
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(fakes.chain.transfers) == 1
    assert sorted(r.already_refunded for r in results) == [False, True, True, True, True]
    assert services.refunds.locks is services.refund_locks
    assert len(services.refund_locks) == 0


def test_refund_unpaid_order_is_conflict(db, services, fakes, make_order):
    order = make_order()

    with pytest.raises(ConflictError):
        services.refunds.refund(db, order.id, reason="nope")

    assert fakes.chain.transfers == []


def test_failed_transfer_leaves_order_unchanged(db, services, fakes, paid_order):
    order = paid_order()
    fakes.chain.fail_transfers = True

    with pytest.raises(RefundError) as exc:
        services.refunds.refund(db, order.id, reason="x")

    assert exc.value.message.startswith("Refund failed:")
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.confirmed.value
    assert o.lifecycle_status == LifecycleStatus.payment_confirmed.value
    assert db.query(OrderEvent).filter(OrderEvent.stage == EventStage.refund.value).count() == 0


def test_card_refund_goes_through_processor(db, services, fakes, make_order):
    order = make_order(paymentMethod=PaymentMethod.stripe)
    services.payments.confirm_card_payment(db, order.id, session_id="cs_1", payment_intent_id="pi_1")

    result = services.refunds.refund(db, order.id, reason="requested_by_customer")

    assert result.reference == "re_1"
    assert fakes.card_gateway.refunds == [
        {"payment_intent": "pi_1", "amount": 4900, "reason": "requested_by_customer"}
    ]
    assert fakes.chain.transfers == []


def test_sweep_refunds_old_failed_orders_and_skips_young_ones(db, services, fakes, paid_order):
    old = _failed_paid_order(db, services, fakes, paid_order, "sig-old")
    young = _failed_paid_order(db, services, fakes, paid_order, "sig-young")
    _age(db, services, old.id, 25)

    result = services.refunds.process_auto_refunds(db)

    assert result.scanned == 1
    assert result.refunded == [old.id]
    assert result.failed == []
    assert services.orders.get(db, old.id, fresh=True).payment_status == PaymentStatus.refunded.value
    assert services.orders.get(db, young.id, fresh=True).payment_status == PaymentStatus.confirmed.value


def test_sweep_continues_past_a_failing_refund(db, services, fakes, paid_order):
    first = _failed_paid_order(db, services, fakes, paid_order, "sig-a")
    second = _failed_paid_order(db, services, fakes, paid_order, "sig-b")
    _age(db, services, first.id, 30)
    _age(db, services, second.id, 26)

    original_prepare = fakes.chain.prepare_transfer
    calls = []

    def flaky(recipient, lamports):
        calls.append(recipient)
        if len(calls) == 1:
            raise RuntimeError("unexpected")
        return original_prepare(recipient, lamports)

    fakes.chain.prepare_transfer = flaky

    result = services.refunds.process_auto_refunds(db)

    assert result.scanned == 2
    assert result.failed == [first.id]
    assert result.refunded == [second.id]
    assert services.orders.get(db, first.id, fresh=True).payment_status == PaymentStatus.confirmed.value


def test_unconfirmed_transfer_is_rechecked_not_resent(db, services, fakes, paid_order, payer):
    order = paid_order()
    fakes.chain.next_state = TransferState.pending

    with pytest.raises(RefundError):
        services.refunds.refund(db, order.id, reason="slow cluster")

    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.confirmed.value
    assert o.refund_reference == "refund-sig-1"
    assert fakes.chain.transfers == [(payer, 100_000_000)]

    # still unconfirmed: the retry fails without signing anything new
    with pytest.raises(RefundError):
        services.refunds.refund(db, order.id, reason="retry")
    assert len(fakes.chain.transfers) == 1

    fakes.chain.states["refund-sig-1"] = TransferState.confirmed
    result = services.refunds.refund(db, order.id, reason="retry")

    assert result.already_refunded is False
    assert result.reference == "refund-sig-1"
    assert len(fakes.chain.transfers) == 1
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.refunded.value
    assert o.lifecycle_status == LifecycleStatus.refunded.value


def test_sweep_does_not_resend_a_pending_refund(db, services, fakes, paid_order):
    order = _failed_paid_order(db, services, fakes, paid_order, "sig-pending")
    _age(db, services, order.id, 30)
    fakes.chain.next_state = TransferState.pending

    first = services.refunds.process_auto_refunds(db)
    second = services.refunds.process_auto_refunds(db)

    assert first.failed == [order.id]
    assert second.failed == [order.id]
    assert len(fakes.chain.transfers) == 1


def test_expired_refund_transfer_is_signed_again(db, services, fakes, paid_order, payer):
    order = paid_order()
    # the cluster never sees the first transfer
    fakes.chain.next_state = None

    with pytest.raises(RefundError):
        services.refunds.refund(db, order.id, reason="dropped")

    fakes.chain.block_height += 1000
    fakes.chain.next_state = TransferState.confirmed
    result = services.refunds.refund(db, order.id, reason="retry")

    assert result.reference == "refund-sig-2"
    o = services.orders.get(db, order.id, fresh=True)
    assert o.refund_reference == "refund-sig-2"
    assert o.payment_status == PaymentStatus.refunded.value


def test_failed_refund_transfer_is_signed_again(db, services, fakes, paid_order):
    order = paid_order()
    fakes.chain.next_state = TransferState.failed

    with pytest.raises(RefundError):
        services.refunds.refund(db, order.id, reason="first")

    fakes.chain.next_state = TransferState.confirmed
    result = services.refunds.refund(db, order.id, reason="retry")

    assert result.reference == "refund-sig-2"
    assert services.orders.get(db, order.id, fresh=True).payment_status == PaymentStatus.refunded.value
