"""Order status changes outside the payment flow.

``pending``, ``confirmed`` and ``payment_failed`` belong to checkout and
payment handling. Staff can only move a paid order along fulfilment
(``processing``, ``shipped``, ``delivered``). An unpaid order can be
cancelled, which gives its reserved stock back.
"""
from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import false, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .exceptions import InvalidStatusTransition, OrderNotFound
from .models import Order
from .reservation import release
from .schemas import OrderStatus, PaymentStatus
from .unit_of_work import UnitOfWork, translate_store_error

logger = logging.getLogger(__name__)

FULFILMENT_STATUSES = (
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
)
CANCELLABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PAYMENT_FAILED.value)


def _guarded_update(db: Session, stmt, order_id: int):
    """Run a conditional UPDATE on one order and reload it."""
    try:
        changed = db.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1
        order = crud.get_order(db, order_id)
    except SQLAlchemyError as e:
        raise translate_store_error(e) from e
    if order is None:
        raise OrderNotFound(order_id)
    return changed, order


def update_order_status(db: Session, order_id: int, new_status: str) -> Order:
    """Move a paid order to a fulfilment status.

    Statuses owned by checkout, payment handling or cancellation are refused.
    """
    allowed = new_status in FULFILMENT_STATUSES
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status == PaymentStatus.COMPLETED.value,
            Order.status.in_((OrderStatus.CONFIRMED.value,) + FULFILMENT_STATUSES),
        )
        .values(status=new_status)
    )
    if not allowed:
        # still resolves the order so a missing id is a 404
        stmt = stmt.where(false())
    with UnitOfWork(db) as uow:
        changed, order = _guarded_update(db, stmt, order_id)
        uow.refresh(order)
        if not changed:
            current = order.status if order.payment_status == PaymentStatus.COMPLETED.value else "unpaid"
            raise InvalidStatusTransition(order_id, current, new_status)
        uow.commit()

    logger.info("order %s status set to %s", order_id, new_status)
    return order


def cancel_order(db: Session, order_id: int) -> Order:
    """Cancel an unpaid order and put its quantities back in stock."""
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.status.in_(CANCELLABLE_STATUSES),
            Order.payment_status != PaymentStatus.COMPLETED.value,
        )
        .values(status=OrderStatus.CANCELLED.value)
    )
    with UnitOfWork(db) as uow:
        changed, order = _guarded_update(db, stmt, order_id)
        uow.refresh(order)
        if not changed:
            raise InvalidStatusTransition(order_id, order.status, OrderStatus.CANCELLED.value)

        quantities = Counter()
        for item in order.items:
            quantities[item.product_id] += item.quantity
        try:
            release(db, dict(quantities))
        except SQLAlchemyError as e:
            raise translate_store_error(e) from e
        uow.commit()

    logger.info("order %s cancelled, stock returned: %s", order_id, dict(quantities))
    return order
