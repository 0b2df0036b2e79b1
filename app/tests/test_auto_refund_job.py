from datetime import timedelta

import pytest

from app.clients.generator_client import GeneratorError
from app.core.clock import utcnow
from app.core.errors import GenerationError
from app.jobs.auto_refund import run
from app.models.enums import PaymentStatus


def test_job_refunds_stale_failed_orders(db, settings, services, fakes, collaborators, session_factory, paid_order, capsys):
    fakes.generator.error = GeneratorError("boom")
    order = paid_order()
    with pytest.raises(GenerationError):
        services.generation.generate(db, order.id)
    services.orders.compare_and_set(
        db, order.id, expected={}, values={"created_at": utcnow() - timedelta(hours=48)}
    )
    db.commit()

    code = run(cleanup=True, settings=settings, collaborators=collaborators, session_factory=session_factory)

    assert code == 0
    assert "scanned=1 refunded=1 failed=0" in capsys.readouterr().out
    assert services.orders.get(db, order.id, fresh=True).payment_status == PaymentStatus.refunded.value
    assert len(fakes.chain.transfers) == 1


def test_job_exit_code_reports_failures(db, settings, services, fakes, collaborators, session_factory, paid_order):
    fakes.generator.error = GeneratorError("boom")
    order = paid_order()
    with pytest.raises(GenerationError):
        services.generation.generate(db, order.id)
    services.orders.compare_and_set(
        db, order.id, expected={}, values={"created_at": utcnow() - timedelta(hours=48)}
    )
    db.commit()
    fakes.chain.fail_transfers = True

    assert run(settings=settings, collaborators=collaborators, session_factory=session_factory) == 1
