import threading
from decimal import Decimal

import pytest

from app.core.errors import (
    ConflictError,
    UpstreamError,
    ValidationError,
    VerificationError,
    VerificationReason,
)
from app.clients.solana_client import ChainRpcError
from app.models.enums import LifecycleStatus, PaymentMethod, PaymentStatus
from app.models.order_event import OrderEvent


def _lamports(sol) -> int:
    return int(Decimal(str(sol)) * 1_000_000_000)


def test_order_amount_comes_from_tier(db, make_order):
    starter = make_order()
    enterprise = make_order(tier="enterprise")
    card = make_order(tier="professional", paymentMethod=PaymentMethod.stripe)

    assert starter.payment_amount == Decimal("0.1")
    assert starter.payment_currency == "SOL"
    assert enterprise.payment_amount == Decimal("2.0")
    assert card.payment_amount == Decimal("149")
    assert card.payment_currency == "USD"
    assert starter.lifecycle_status == LifecycleStatus.pending_payment.value


def test_verify_confirms_payment(db, services, fakes, make_order):
    order = make_order()
    fakes.chain.add_tx("sig-1", lamports=_lamports("0.1"), confirmations=40)

    result = services.payments.verify_onchain(db, order.id, "sig-1")

    assert result.already_confirmed is False
    assert result.status == LifecycleStatus.payment_confirmed
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.confirmed.value
    assert o.payment_reference == "sig-1"
    assert o.payment_confirmations == 40
    assert o.payment_confirmed_at is not None
    assert fakes.notifier.sent == [("payment", order.id)]


def test_verify_twice_is_idempotent(db, services, fakes, make_order):
    order = make_order()
    fakes.chain.add_tx("sig-1", lamports=_lamports("0.1"))
    scheduled = []
    services.payments.on_confirmed = scheduled.append

    services.payments.verify_onchain(db, order.id, "sig-1")
    first = services.orders.get(db, order.id, fresh=True)
    confirmed_at = first.payment_confirmed_at

    again = services.payments.verify_onchain(db, order.id, "sig-1")

    assert again.already_confirmed is True
    assert again.status == LifecycleStatus.payment_confirmed
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_confirmed_at == confirmed_at
    # side effects happened once
    assert fakes.notifier.sent == [("payment", order.id)]
    assert scheduled == [order.id]
    assert fakes.chain.lookups == 1
    events = db.query(OrderEvent).filter(OrderEvent.order_id == order.id, OrderEvent.stage == "payment").all()
    assert len(events) == 1


def test_concurrent_verify_has_single_winner(db, services, fakes, make_order, session_factory):
    order = make_order()
    fakes.chain.add_tx("sig-race", lamports=_lamports("0.1"))
    scheduled = []
    services.payments.on_confirmed = scheduled.append
    results = []
    barrier = threading.Barrier(4)

    def worker():
        s = session_factory()
        try:
            barrier.wait()
            results.append(services.payments.verify_onchain(s, order.id, "sig-race"))
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4
    assert sum(1 for r in results if not r.already_confirmed) == 1
    assert scheduled == [order.id]


def test_underpayment_rejected_overpayment_accepted(db, services, fakes, make_order):
    under = make_order()
    over = make_order()
    # starter is 0.1 SOL
    fakes.chain.add_tx("sig-under", lamports=_lamports("0.0999999"))
    fakes.chain.add_tx("sig-over", lamports=_lamports("0.15"))

    with pytest.raises(VerificationError) as exc:
        services.payments.verify_onchain(db, under.id, "sig-under")
    assert exc.value.verification_reason == VerificationReason.AMOUNT_MISMATCH
    assert services.orders.get(db, under.id, fresh=True).lifecycle_status == LifecycleStatus.pending_payment.value

    result = services.payments.verify_onchain(db, over.id, "sig-over")
    assert result.status == LifecycleStatus.payment_confirmed


def test_unknown_transaction(db, services, make_order):
    order = make_order()
    with pytest.raises(VerificationError) as exc:
        services.payments.verify_onchain(db, order.id, "missing")
    assert exc.value.reason == "not_found"


def test_failed_transaction(db, services, fakes, make_order):
    order = make_order()
    fakes.chain.add_tx("sig-err", lamports=_lamports("0.1"), success=False)
    with pytest.raises(VerificationError) as exc:
        services.payments.verify_onchain(db, order.id, "sig-err")
    assert exc.value.verification_reason == VerificationReason.TRANSACTION_FAILED


def test_sender_mismatch(db, services, fakes, make_order):
    order = make_order()
    fakes.chain.add_tx("sig-other", sender="SomeoneElse111", lamports=_lamports("0.1"))
    with pytest.raises(VerificationError) as exc:
        services.payments.verify_onchain(db, order.id, "sig-other")
    assert exc.value.verification_reason == VerificationReason.SENDER_MISMATCH
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.pending.value
    assert o.payment_reference is None


def test_signature_cannot_pay_two_orders(db, services, fakes, make_order):
    first = make_order()
    second = make_order()
    fakes.chain.add_tx("sig-shared", lamports=_lamports("0.1"))

    services.payments.verify_onchain(db, first.id, "sig-shared")
    with pytest.raises(ConflictError):
        services.payments.verify_onchain(db, second.id, "sig-shared")

    assert services.orders.get(db, second.id, fresh=True).payment_status == PaymentStatus.pending.value


def test_rpc_outage_is_upstream_error(db, services, fakes, make_order):
    order = make_order()

    def boom(signature):
        raise ChainRpcError("rpc_request_failed: timeout")

    fakes.chain.lookup_transaction = boom
    with pytest.raises(UpstreamError):
        services.payments.verify_onchain(db, order.id, "sig")


def test_card_order_cannot_be_verified_on_chain(db, services, make_order):
    order = make_order(paymentMethod=PaymentMethod.stripe)
    with pytest.raises(ValidationError):
        services.payments.verify_onchain(db, order.id, "sig")


def test_card_payment_confirm_and_retry_after_failure(db, services, make_order):
    order = make_order(paymentMethod=PaymentMethod.stripe)

    assert services.payments.mark_card_payment_failed(db, order.id, message="card_declined") is True
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_status == PaymentStatus.failed.value
    assert o.lifecycle_status == LifecycleStatus.pending_payment.value

    result = services.payments.confirm_card_payment(db, order.id, session_id="cs_1", payment_intent_id="pi_1")
    assert result.already_confirmed is False
    o = services.orders.get(db, order.id, fresh=True)
    assert o.payment_reference == "cs_1"
    assert o.stripe_payment_intent_id == "pi_1"

    again = services.payments.confirm_card_payment(db, order.id, session_id="cs_1", payment_intent_id="pi_1")
    assert again.already_confirmed is True


def test_notifier_failure_does_not_fail_verify(db, services, fakes, make_order):
    fakes.notifier.explode = True
    order = make_order()
    fakes.chain.add_tx("sig-1", lamports=_lamports("0.1"))

    result = services.payments.verify_onchain(db, order.id, "sig-1")

    assert result.status == LifecycleStatus.payment_confirmed
