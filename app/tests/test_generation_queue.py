from app.models.enums import LifecycleStatus
from app.services.generation_queue import GenerationQueue


def test_queue_runs_generation_in_background(db, services, fakes, paid_order, session_factory):
    order = paid_order()
    queue = GenerationQueue(session_factory, services.generation, max_workers=2)
    try:
        assert queue.submit(order.id) is True
        queue.wait_idle(timeout=10)
    finally:
        queue.shutdown()

    assert fakes.generator.calls == 1
    assert services.orders.get(db, order.id, fresh=True).lifecycle_status == LifecycleStatus.completed.value


def test_queue_ignores_duplicate_submissions(db, services, fakes, paid_order, session_factory):
    order = paid_order()
    fakes.generator.delay = 0.3
    queue = GenerationQueue(session_factory, services.generation, max_workers=2)
    try:
        assert queue.submit(order.id) is True
        assert queue.submit(order.id) is False
        assert queue.pending() == [order.id]
        queue.wait_idle(timeout=10)
    finally:
        queue.shutdown()

    assert fakes.generator.calls == 1


def test_failed_job_does_not_kill_the_queue(db, services, fakes, paid_order, session_factory):
    first = paid_order(signature="sig-q1")
    second = paid_order(signature="sig-q2")
    queue = GenerationQueue(session_factory, services.generation, max_workers=1)
    try:
        # first is already completed inline, so its queued run ends in a conflict
        services.generation.generate(db, first.id)
        queue.submit(first.id)
        queue.submit(second.id)
        queue.wait_idle(timeout=10)
    finally:
        queue.shutdown()

    assert services.orders.get(db, second.id, fresh=True).lifecycle_status == LifecycleStatus.completed.value


def test_closed_queue_refuses_work(services, session_factory):
    queue = GenerationQueue(session_factory, services.generation)
    queue.shutdown()

    assert queue.submit("ord_x") is False
