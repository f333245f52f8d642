"""Order placement.

``place_order`` wraps stock reservation and the order insert in one
``UnitOfWork``: both are committed together or neither is. The client's
total is cross-checked against its own line prices up front, but the billed
total is always recomputed from the product rows read inside the unit.
"""
from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import config, messaging
from .exceptions import (
    EmptyCart,
    ImmediatePaymentDisabled,
    PersistenceFailure,
    StockError,
    TotalMismatch,
    TransientStoreError,
)
from .models import Order, OrderItem
from .reservation import ReservedSet, reserve
from .schemas import OrderStatus, PaymentStatus, ShippingAddress
from .unit_of_work import UnitOfWork, run_with_retry

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _client_lines_total(cart_lines: Sequence) -> Optional[Decimal]:
    if any(getattr(line, "price", None) is None for line in cart_lines):
        return None
    return sum(
        (Decimal(str(line.price)) * int(line.quantity) for line in cart_lines),
        Decimal("0"),
    ).quantize(CENT)


def check_client_total(cart_lines: Sequence, client_total) -> None:
    """Reject a submitted total that disagrees with the submitted line prices."""
    if client_total is None:
        return
    computed = _client_lines_total(cart_lines)
    if computed is None:
        return
    submitted = Decimal(str(client_total)).quantize(CENT)
    if abs(computed - submitted) > Decimal(str(config.TOTAL_TOLERANCE)):
        raise TotalMismatch(submitted, computed)


def _build_order(
    *,
    user_id: int,
    reserved: ReservedSet,
    shipping_address: Optional[ShippingAddress],
    payment_method: str,
    notes: Optional[str],
    mark_paid: bool,
) -> Order:
    shipping = shipping_address or ShippingAddress()
    order = Order(
        user_id=user_id,
        total_price=reserved.total.quantize(CENT),
        payment_method=payment_method,
        payment_status=PaymentStatus.PENDING.value,
        status=OrderStatus.PENDING.value,
        paid_at=None,
        shipping_street=shipping.street,
        shipping_city=shipping.city,
        shipping_state=shipping.state,
        shipping_zip_code=shipping.zip_code,
        shipping_country=shipping.country,
        notes=notes,
    )
    if mark_paid:
        order.payment_status = PaymentStatus.COMPLETED.value
        order.status = OrderStatus.CONFIRMED.value
        order.paid_at = dt.datetime.now(dt.timezone.utc)

    order.items = [
        OrderItem(
            product_id=line.product_id,
            name=line.name,
            price=line.price,
            quantity=line.quantity,
            image=line.image,
        )
        for line in reserved.lines
    ]
    return order


def _commit_order(
    db: Session,
    *,
    user_id: int,
    cart_lines: Sequence,
    shipping_address: Optional[ShippingAddress],
    payment_method: str,
    client_total,
    notes: Optional[str],
    mark_paid: bool,
) -> Order:
    with UnitOfWork(db) as uow:
        reserved = reserve(db, cart_lines)

        if client_total is not None and reserved.total != Decimal(str(client_total)).quantize(CENT):
            logger.warning(
                "client total differs from server total: user=%s client=%s server=%s",
                user_id, client_total, reserved.total,
            )

        order = _build_order(
            user_id=user_id,
            reserved=reserved,
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
            mark_paid=mark_paid,
        )
        db.add(order)
        try:
            uow.flush()
        except PersistenceFailure:
            logger.exception(
                "order insert failed after reservation, rolling back stock: user=%s products=%s",
                user_id, reserved.quantities(),
            )
            raise
        # load server defaults and items while the unit is still open
        uow.refresh(order)
        uow.commit()

    return order


def _publish_order_created(order: Order) -> None:
    if not config.PUBLISH_EVENTS:
        return
    try:
        messaging.publish_event(
            "order.created",
            {
                "event": "order.created",
                "occurred_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
                "order_id": order.id,
                "user_id": order.user_id,
                "total_price": str(order.total_price),
                "payment_status": order.payment_status,
                "items": [
                    {"product_id": i.product_id, "quantity": i.quantity}
                    for i in order.items
                ],
            },
        )
    except Exception:
        # the order is committed; a lost notification must not fail the request
        logger.exception("failed to publish order.created for order %s", order.id)


def place_order(
    db: Session,
    user_id: int,
    cart_lines: Sequence,
    shipping_address: Optional[ShippingAddress],
    payment_method: str,
    client_total=None,
    notes: Optional[str] = None,
    mark_paid: bool = False,
) -> Order:
    """Reserve stock for ``cart_lines`` and create one pending order.

    Raises ``EmptyCart``, ``TotalMismatch``, ``ProductNotFound``,
    ``InsufficientStock``, ``PersistenceFailure`` or ``TransientStoreError``.
    On every one of them no stock has changed and no order exists.
    """
    if not cart_lines:
        raise EmptyCart()
    if mark_paid and not config.ALLOW_IMMEDIATE_PAYMENT:
        raise ImmediatePaymentDisabled()
    check_client_total(cart_lines, client_total)

    try:
        order = run_with_retry(
            lambda: _commit_order(
                db,
                user_id=user_id,
                cart_lines=cart_lines,
                shipping_address=shipping_address,
                payment_method=payment_method,
                client_total=client_total,
                notes=notes,
                mark_paid=mark_paid,
            ),
            attempts=config.CHECKOUT_RETRY_ATTEMPTS,
            delay=config.CHECKOUT_RETRY_DELAY,
        )
    except StockError as e:
        logger.info("checkout rejected: user=%s product=%s reason=%s", user_id, e.product_id, e.code)
        raise
    except TransientStoreError:
        logger.error("checkout aborted, store unavailable: user=%s lines=%s", user_id, len(cart_lines))
        raise

    logger.info(
        "order %s placed: user=%s total=%s paid=%s",
        order.id, user_id, order.total_price, mark_paid,
    )
    _publish_order_created(order)
    return order
