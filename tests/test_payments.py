"""Tests for payment outcome handling."""
from decimal import Decimal

import pytest

from order_service import payment_consumer
from order_service.checkout import place_order
from order_service.crud import get_order
from order_service.exceptions import InvalidPaymentTransition, OrderNotFound, TransientStoreError
from order_service.lifecycle import cancel_order
from order_service.payments import apply_payment_result

from .factories import line


@pytest.fixture
def pending_order(db, add_product, address):
    pid = add_product(price="15.00", stock=5)
    order = place_order(db, 4, [line(pid, 2)], address, "card")
    return order, pid


def test_confirmation_completes_payment_without_touching_stock(db, pending_order, stock_of):
    order, pid = pending_order
    assert stock_of(pid) == 3

    paid = apply_payment_result(db, order.id, succeeded=True, transaction_id="pi_123", amount="30.00")

    assert paid.payment_status == "completed"
    assert paid.status == "confirmed"
    assert paid.paid_at is not None
    assert paid.payment_intent_id == "pi_123"
    assert stock_of(pid) == 3


def test_failure_marks_payment_failed(db, pending_order, stock_of):
    order, pid = pending_order

    failed = apply_payment_result(db, order.id, succeeded=False, transaction_id="pi_456")

    assert failed.payment_status == "failed"
    assert failed.status == "payment_failed"
    assert failed.paid_at is None
    assert stock_of(pid) == 3


def test_redelivered_confirmation_is_a_no_op(db, pending_order):
    order, _ = pending_order
    first = apply_payment_result(db, order.id, succeeded=True, transaction_id="pi_1")
    paid_at = first.paid_at

    again = apply_payment_result(db, order.id, succeeded=True, transaction_id="pi_1")

    assert again.payment_status == "completed"
    assert again.paid_at == paid_at


def test_conflicting_outcome_rejected(db, pending_order):
    order, _ = pending_order
    apply_payment_result(db, order.id, succeeded=True)

    with pytest.raises(InvalidPaymentTransition):
        apply_payment_result(db, order.id, succeeded=False)


def test_unknown_order(db):
    with pytest.raises(OrderNotFound):
        apply_payment_result(db, 999, succeeded=True)


def test_line_items_unchanged_by_payment(db, pending_order, session_factory):
    order, pid = pending_order
    apply_payment_result(db, order.id, succeeded=True)

    with session_factory() as s:
        reloaded = get_order(s, order.id)
        assert [(i.product_id, i.quantity, i.price) for i in reloaded.items] == [(pid, 2, Decimal("15.00"))]
        assert reloaded.total_price == Decimal("30.00")


def test_consumer_applies_succeeded_event(pending_order, session_factory, monkeypatch):
    order, _ = pending_order
    monkeypatch.setattr(payment_consumer, "SessionLocal", session_factory)

    payment_consumer.handle_payment_event(
        {"event": "payment.succeeded", "order_id": order.id, "payment_id": "pi_evt", "amount": 30.0}
    )

    with session_factory() as s:
        reloaded = get_order(s, order.id)
        assert reloaded.payment_status == "completed"
        assert reloaded.payment_intent_id == "pi_evt"


def test_consumer_applies_failed_event(pending_order, session_factory, monkeypatch):
    order, _ = pending_order
    monkeypatch.setattr(payment_consumer, "SessionLocal", session_factory)

    payment_consumer.handle_payment_event({"event": "payment.failed", "order_id": order.id})

    with session_factory() as s:
        assert get_order(s, order.id).status == "payment_failed"


def test_consumer_drops_events_for_unknown_orders(session_factory, monkeypatch):
    monkeypatch.setattr(payment_consumer, "SessionLocal", session_factory)

    # must not raise, or the message would be nacked as a handler crash
    payment_consumer.handle_payment_event({"event": "payment.succeeded", "order_id": 4242})
    payment_consumer.handle_payment_event({"event": "refund.created", "order_id": 1})


def test_success_after_failed_attempt_completes_payment(db, pending_order, stock_of):
    order, pid = pending_order
    apply_payment_result(db, order.id, succeeded=False, transaction_id="pi_retry")

    paid = apply_payment_result(db, order.id, succeeded=True, transaction_id="pi_retry")

    assert paid.payment_status == "completed"
    assert paid.status == "confirmed"
    assert paid.paid_at is not None
    assert stock_of(pid) == 3


def test_redelivered_failure_is_a_no_op(db, pending_order):
    order, _ = pending_order
    apply_payment_result(db, order.id, succeeded=False)

    again = apply_payment_result(db, order.id, succeeded=False)

    assert again.payment_status == "failed"


def test_stale_session_cannot_overwrite_settled_payment(db, pending_order, session_factory):
    order, _ = pending_order
    # db still holds the order as pending in its identity map
    assert order.payment_status == "pending"

    with session_factory() as other:
        apply_payment_result(other, order.id, succeeded=True, transaction_id="pi_first")

    with pytest.raises(InvalidPaymentTransition):
        apply_payment_result(db, order.id, succeeded=False)

    with session_factory() as s:
        reloaded = get_order(s, order.id)
        assert reloaded.payment_status == "completed"
        assert reloaded.status == "confirmed"
        assert reloaded.payment_intent_id == "pi_first"


def test_payment_on_cancelled_order_rejected(db, pending_order):
    order, _ = pending_order
    cancel_order(db, order.id)

    with pytest.raises(InvalidPaymentTransition):
        apply_payment_result(db, order.id, succeeded=True)


def test_consumer_retries_transient_store_errors(pending_order, session_factory, monkeypatch):
    order, _ = pending_order
    monkeypatch.setattr(payment_consumer, "SessionLocal", session_factory)
    real_apply = payment_consumer.apply_payment_result
    calls = []

    def flaky(db, *args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise TransientStoreError("Store unavailable: OperationalError")
        return real_apply(db, *args, **kwargs)

    monkeypatch.setattr(payment_consumer, "apply_payment_result", flaky)

    payment_consumer.handle_payment_event({"event": "payment.succeeded", "order_id": order.id})

    assert len(calls) == 2
    with session_factory() as s:
        assert get_order(s, order.id).payment_status == "completed"


def test_consumer_reraises_when_store_stays_down(session_factory, monkeypatch):
    monkeypatch.setattr(payment_consumer, "SessionLocal", session_factory)

    def down(*args, **kwargs):
        raise TransientStoreError("Store unavailable: OperationalError")

    monkeypatch.setattr(payment_consumer, "apply_payment_result", down)

    # surfaces so the consumer requeues the message instead of dropping it
    with pytest.raises(TransientStoreError):
        payment_consumer.handle_payment_event({"event": "payment.succeeded", "order_id": 1})
