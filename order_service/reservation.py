"""Inventory reservation.

Stock is decremented with one conditional UPDATE per product::

    UPDATE products SET count_in_stock = count_in_stock - :qty
    WHERE id = :id AND count_in_stock >= :qty

so the check and the write are a single statement against the store. No row
is ever read first and written back later, which is what lets concurrent
checkouts run without an application lock.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import EmptyCart, InsufficientStock, ProductNotFound
from .models import Product
from .unit_of_work import translate_store_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservedLine:
    product_id: int
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class ReservedSet:
    lines: List[ReservedLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0.00"))

    def quantities(self) -> dict[int, int]:
        return {line.product_id: line.quantity for line in self.lines}


def merge_lines(cart_lines: Iterable) -> dict[int, int]:
    """Sum quantities per product, keeping first-seen order."""
    merged: dict[int, int] = {}
    for line in cart_lines:
        pid = int(line.product_id)
        qty = int(line.quantity)
        if qty <= 0:
            raise ValueError("quantity must be > 0")
        merged[pid] = merged.get(pid, 0) + qty
    return merged


def _decrement(session: Session, product_id: int, quantity: int) -> bool:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.count_in_stock >= quantity)
        .values(count_in_stock=Product.count_in_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


def _increment(session: Session, product_id: int, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(count_in_stock=Product.count_in_stock + quantity)
        .execution_options(synchronize_session=False)
    )
    session.execute(stmt)


def release(session: Session, quantities: dict[int, int]) -> None:
    """Give back stock taken by ``reserve`` in the same transaction."""
    for pid in sorted(quantities):
        _increment(session, pid, quantities[pid])


def reserve(session: Session, cart_lines: Sequence) -> ReservedSet:
    """Reserve every cart line or nothing.

    Raises ``ProductNotFound`` / ``InsufficientStock`` for the first failing
    product after undoing the decrements already applied in this call.
    """
    if not cart_lines:
        raise EmptyCart()

    merged = merge_lines(cart_lines)
    applied: dict[int, int] = {}

    try:
        # Stable order so concurrent checkouts lock rows the same way
        for pid in sorted(merged):
            qty = merged[pid]
            if _decrement(session, pid, qty):
                applied[pid] = qty
                continue

            row = session.execute(
                select(Product.name, Product.count_in_stock).where(Product.id == pid)
            ).first()
            release(session, applied)
            if row is None:
                logger.info("reservation failed: product %s not found", pid)
                raise ProductNotFound(pid)
            logger.info(
                "reservation failed: product %s requested=%s available=%s",
                pid, qty, row.count_in_stock,
            )
            raise InsufficientStock(pid, requested=qty, available=row.count_in_stock, name=row.name)

        rows = session.execute(
            select(Product.id, Product.name, Product.price, Product.image).where(Product.id.in_(list(merged)))
        ).all()
    except SQLAlchemyError as e:
        raise translate_store_error(e) from e

    by_id = {row.id: row for row in rows}
    return ReservedSet(
        lines=[
            ReservedLine(
                product_id=pid,
                name=by_id[pid].name,
                price=Decimal(str(by_id[pid].price)).quantize(Decimal("0.01")),
                quantity=qty,
                image=by_id[pid].image,
            )
            for pid, qty in merged.items()
        ]
    )
