"""Payment intent creation at the provider.

Only the intent is created here; the charge itself and the webhook that
reports its outcome belong to the payment provider. The outcome comes back
through ``payments.apply_payment_result``.
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

import stripe
from sqlalchemy.orm import Session

from . import config
from .exceptions import GatewayError, GatewayNotConfigured, InvalidPaymentTransition
from .models import Order
from .payments import UNSETTLED_STATUSES
from .schemas import PaymentStatus
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


def _stripe_required() -> None:
    if not config.STRIPE_SECRET_KEY:
        raise GatewayNotConfigured()
    stripe.api_key = config.STRIPE_SECRET_KEY


def to_minor_units(amount) -> int:
    # Convert decimal currency to integer minor units (e.g., paise)
    dec = Decimal(str(amount))
    minor = (dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def create_payment_intent(db: Session, order: Order) -> dict:
    """Create a PaymentIntent for the server-side total of an unpaid order.

    Orders whose last payment failed get a fresh intent so the customer can
    pay again.
    """
    _stripe_required()

    if order.payment_status not in PAYABLE_STATUSES or order.status not in UNSETTLED_STATUSES:
        current = order.payment_status if order.payment_status not in PAYABLE_STATUSES else order.status
        raise InvalidPaymentTransition(order.id, current, PaymentStatus.PENDING.value)

    amount_minor = to_minor_units(order.total_price)
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_minor,
            currency=config.STRIPE_CURRENCY,
            automatic_payment_methods={"enabled": True},
            metadata={
                "order_id": str(order.id),
                "user_id": str(order.user_id),
            },
            description=f"Order #{order.id}",
        )
    except stripe.StripeError as e:
        logger.error("stripe refused payment intent for order %s: %s", order.id, e)
        raise GatewayError("Payment provider error. Please try again later.") from e

    with UnitOfWork(db) as uow:
        order.payment_intent_id = intent.id
        uow.commit()

    logger.info("payment intent %s created for order %s", intent.id, order.id)
    return {
        "order_id": order.id,
        "payment_intent_id": intent.id,
        # client_secret is safe to send to the client; it is required by Stripe.js
        "client_secret": intent.client_secret,
        "amount": amount_minor,
        "currency": config.STRIPE_CURRENCY,
    }
