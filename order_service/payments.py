"""Payment outcome handling for existing orders.

The payment provider reports success or failure out of band (HTTP callback
or a ``payment.*`` event). Either way the result lands in
``apply_payment_result``, which only moves ``payment_status``/``status`` and
never touches stock.

The transition is one conditional UPDATE guarded on the current payment
state, so a callback and a consumer event racing on the same order cannot
both win.
"""
from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .exceptions import InvalidPaymentTransition, OrderNotFound
from .models import Order
from .schemas import OrderStatus, PaymentStatus
from .unit_of_work import UnitOfWork, translate_store_error

logger = logging.getLogger(__name__)

# order statuses a payment outcome may still land on
UNSETTLED_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PAYMENT_FAILED.value)


def _transition(order_id: int, succeeded: bool, transaction_id: Optional[str]):
    if succeeded:
        # a declined card may be retried on the same intent
        allowed_from = [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]
        values = {
            "payment_status": PaymentStatus.COMPLETED.value,
            "status": OrderStatus.CONFIRMED.value,
            "paid_at": dt.datetime.now(dt.timezone.utc),
        }
    else:
        allowed_from = [PaymentStatus.PENDING.value]
        values = {
            "payment_status": PaymentStatus.FAILED.value,
            "status": OrderStatus.PAYMENT_FAILED.value,
        }
    if transaction_id:
        values["payment_intent_id"] = transaction_id

    return (
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.in_(allowed_from),
            Order.status.in_(UNSETTLED_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def apply_payment_result(
    db: Session,
    order_id: int,
    succeeded: bool,
    transaction_id: Optional[str] = None,
    amount=None,
) -> Order:
    target = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED

    with UnitOfWork(db) as uow:
        try:
            changed = db.execute(_transition(order_id, succeeded, transaction_id)).rowcount == 1
            order = crud.get_order(db, order_id)
        except SQLAlchemyError as e:
            raise translate_store_error(e) from e
        if order is None:
            raise OrderNotFound(order_id)
        uow.refresh(order)

        if not changed:
            if order.payment_status == target.value:
                # redelivered notification
                logger.info("order %s payment already %s, ignoring", order_id, target.value)
                uow.commit()
                return order
            if order.status == OrderStatus.CANCELLED.value:
                if succeeded:
                    logger.error("payment %s for cancelled order %s needs a refund", transaction_id, order_id)
                raise InvalidPaymentTransition(order_id, order.status, target.value)
            raise InvalidPaymentTransition(order_id, order.payment_status, target.value)

        if amount is not None and Decimal(str(amount)).quantize(Decimal("0.01")) != order.total_price:
            logger.warning(
                "order %s gateway amount %s differs from order total %s",
                order_id, amount, order.total_price,
            )
        uow.commit()

    logger.info("order %s payment %s (txn=%s)", order_id, target.value, transaction_id)
    return order
