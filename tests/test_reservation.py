"""Tests for the inventory reservation engine."""
from decimal import Decimal

import pytest
from sqlalchemy import select

from order_service.exceptions import EmptyCart, InsufficientStock, ProductNotFound
from order_service.models import Product
from order_service.reservation import merge_lines, release, reserve

from .factories import line


def _stock_in_session(db, product_id):
    return db.execute(select(Product.count_in_stock).where(Product.id == product_id)).scalar_one()


def test_reserve_decrements_and_snapshots(db, add_product):
    pid = add_product(name="Kettle", price="24.50", stock=5)

    reserved = reserve(db, [line(pid, 3)])

    assert _stock_in_session(db, pid) == 2
    assert len(reserved.lines) == 1
    snap = reserved.lines[0]
    assert snap.product_id == pid
    assert snap.name == "Kettle"
    assert snap.price == Decimal("24.50")
    assert snap.quantity == 3
    assert reserved.total == Decimal("73.50")


def test_reserve_exact_stock_reaches_zero(db, add_product):
    pid = add_product(stock=4)
    reserve(db, [line(pid, 4)])
    assert _stock_in_session(db, pid) == 0


def test_insufficient_stock_reports_requested_and_available(db, add_product):
    pid = add_product(name="Lamp", stock=2)

    with pytest.raises(InsufficientStock) as exc:
        reserve(db, [line(pid, 3)])

    assert exc.value.product_id == pid
    assert exc.value.requested == 3
    assert exc.value.available == 2
    assert "Lamp" in str(exc.value)
    assert _stock_in_session(db, pid) == 2


def test_missing_product_undoes_earlier_decrements(db, add_product):
    first = add_product(name="Mug", stock=10)

    with pytest.raises(ProductNotFound) as exc:
        reserve(db, [line(first, 4), line(first + 1000, 1)])

    assert exc.value.product_id == first + 1000
    # undone inside the same transaction, before any rollback
    assert _stock_in_session(db, first) == 10


def test_late_shortage_undoes_every_earlier_line(db, add_product):
    a = add_product(name="A", stock=5)
    b = add_product(name="B", stock=5)
    c = add_product(name="C", stock=1)

    with pytest.raises(InsufficientStock):
        reserve(db, [line(a, 2), line(b, 5), line(c, 2)])

    assert [_stock_in_session(db, p) for p in (a, b, c)] == [5, 5, 1]


def test_duplicate_lines_are_checked_against_combined_quantity(db, add_product):
    pid = add_product(stock=5)

    with pytest.raises(InsufficientStock) as exc:
        reserve(db, [line(pid, 3), line(pid, 3)])

    assert exc.value.requested == 6
    assert _stock_in_session(db, pid) == 5


def test_duplicate_lines_merge_into_one_snapshot(db, add_product):
    pid = add_product(stock=5)
    reserved = reserve(db, [line(pid, 2), line(pid, 1)])
    assert reserved.quantities() == {pid: 3}
    assert _stock_in_session(db, pid) == 2


def test_snapshot_keeps_request_order(db, add_product):
    a = add_product(name="A", stock=5)
    b = add_product(name="B", stock=5)

    reserved = reserve(db, [line(b, 1), line(a, 1)])

    assert [s.product_id for s in reserved.lines] == [b, a]


def test_empty_cart_rejected(db):
    with pytest.raises(EmptyCart):
        reserve(db, [])


def test_merge_lines_rejects_non_positive_quantity():
    class Raw:
        product_id = 1
        quantity = 0

    with pytest.raises(ValueError):
        merge_lines([Raw()])


def test_release_restores_stock(db, add_product):
    pid = add_product(stock=5)
    reserved = reserve(db, [line(pid, 5)])
    release(db, reserved.quantities())
    assert _stock_in_session(db, pid) == 5
