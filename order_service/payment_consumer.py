from __future__ import annotations

import logging
from typing import Any, Dict

from . import config
from .database import SessionLocal
from .exceptions import InvalidPaymentTransition, OrderNotFound, TransientStoreError
from .messaging import start_consumer_in_thread
from .payments import apply_payment_result
from .unit_of_work import run_with_retry

logger = logging.getLogger(__name__)

PAYMENT_RESULT_QUEUE = "order-service.payment.result.q"


def _apply(order_id: int, payload: Dict[str, Any]) -> None:
    db = SessionLocal()
    try:
        apply_payment_result(
            db,
            order_id,
            succeeded=(payload.get("event") == "payment.succeeded"),
            transaction_id=payload.get("payment_id"),
            amount=payload.get("amount"),
        )
    finally:
        db.close()


def handle_payment_event(payload: Dict[str, Any]) -> None:
    """Expected payload:
    {
      "event": "payment.succeeded" | "payment.failed",
      "order_id": 123,
      "payment_id": "pi_..." (optional),
      "amount": 999.0 (optional)
    }

    A store outage that outlasts the retries is re-raised as
    ``TransientStoreError`` so the consumer puts the message back on the queue.
    """
    event = payload.get("event") or ""
    order_id = payload.get("order_id")
    if not order_id or event not in ("payment.succeeded", "payment.failed"):
        logger.warning("ignoring payment event without order_id or with unknown type: %s", event)
        return

    try:
        run_with_retry(
            lambda: _apply(int(order_id), payload),
            attempts=config.CHECKOUT_RETRY_ATTEMPTS,
            delay=config.CHECKOUT_RETRY_DELAY,
        )
    except (OrderNotFound, InvalidPaymentTransition) as e:
        # nothing to retry; ack and move on
        logger.warning("payment event for order %s dropped: %s", order_id, e)


def start_payment_consumer() -> None:
    start_consumer_in_thread(
        queue_name=PAYMENT_RESULT_QUEUE,
        binding_keys=["payment.succeeded", "payment.failed"],
        handler=handle_payment_event,
        requeue_on=(TransientStoreError,),
    )
