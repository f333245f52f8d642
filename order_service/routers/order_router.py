import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_admin, get_current_user, is_admin
from ..checkout import place_order
from ..database import get_db
from ..exceptions import (
    EmptyCart,
    GatewayError,
    GatewayNotConfigured,
    ImmediatePaymentDisabled,
    InsufficientStock,
    InvalidPaymentTransition,
    InvalidStatusTransition,
    OrderNotFound,
    PersistenceFailure,
    ProductNotFound,
    TotalMismatch,
    TransientStoreError,
)
from ..gateway import create_payment_intent
from ..lifecycle import cancel_order, update_order_status
from ..payments import apply_payment_result

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/orders",
    tags=["Order Service"]
)


def _owned_order_or_404(db: Session, order_id: int, current_user: Dict):
    db_order = crud.get_order(db=db, order_id=order_id)
    # same 404 for "missing" and "not yours" so ids can't be enumerated
    if not db_order or (db_order.user_id != current_user["id"] and not is_admin(current_user)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with id {order_id} not found"
        )
    return db_order


@router.post("/", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    body: schemas.OrderCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Place an order: reserve stock for every line and create a pending order.

    - Prices and the total are taken from the catalog, not from the request.
    - `total_price` in the body is only cross-checked against the line prices sent.
    - Nothing is reserved and no order is created unless every line succeeds.
    """
    user_id = current_user["id"]
    try:
        db_order = place_order(
            db,
            user_id=user_id,
            cart_lines=body.order_items,
            shipping_address=body.shipping_address,
            payment_method=body.payment_method,
            client_total=body.total_price,
            notes=body.notes,
            mark_paid=body.mark_paid,
        )
    except (EmptyCart, TotalMismatch, InsufficientStock) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.detail())
    except ProductNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.detail())
    except ImmediatePaymentDisabled as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.detail())
    except TransientStoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service is temporarily unavailable. Please try again.",
        )
    except PersistenceFailure:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to place order due to a server error.",
        )
    except Exception:
        logger.exception("unexpected checkout failure: user=%s", user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to place order due to a server error.",
        )

    return schemas.OrderOut.from_order(db_order)


@router.get("/", response_model=schemas.OrderListResponse)
def get_orders(
    skip: int = 0,
    limit: int = 100,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db)
):

    orders = crud.get_orders(db=db, skip=skip, limit=limit)
    total = crud.get_order_count(db=db)

    return {
        "orders": [schemas.OrderOut.from_order(o) for o in orders],
        "total": total,
        "skip": skip,
        "limit": limit
    }


@router.get("/mine", response_model=schemas.OrderListResponse)
def get_my_orders(
    skip: int = 0,
    limit: int = 100,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):

    user_id = current_user["id"]

    orders = crud.get_orders_by_user(db=db, user_id=user_id, skip=skip, limit=limit)
    total = crud.get_user_order_count(db=db, user_id=user_id)

    return {
        "orders": [schemas.OrderOut.from_order(o) for o in orders],
        "total": total,
        "skip": skip,
        "limit": limit
    }


@router.get("/{order_id:int}", response_model=schemas.OrderOut)
def get_order(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db)
):

    return schemas.OrderOut.from_order(_owned_order_or_404(db, order_id, current_user))


@router.post("/{order_id:int}/payment", response_model=schemas.OrderOut)
def record_payment_result(
    order_id: int,
    body: schemas.PaymentResult,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Gateway confirmation callback: settle the payment of an existing order.

    Stock is never touched here.
    """
    try:
        db_order = apply_payment_result(
            db,
            order_id,
            succeeded=body.succeeded,
            transaction_id=body.transaction_id,
            amount=body.amount,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidPaymentTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail())
    except TransientStoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service is temporarily unavailable. Please try again.",
        )
    return schemas.OrderOut.from_order(db_order)


@router.post("/{order_id:int}/payment-intent", response_model=schemas.PaymentIntentOut)
def create_order_payment_intent(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a Stripe PaymentIntent for the caller's unpaid order."""
    db_order = _owned_order_or_404(db, order_id, current_user)
    try:
        return create_payment_intent(db, db_order)
    except GatewayNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except InvalidPaymentTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail())


@router.patch("/{order_id:int}/status", response_model=schemas.OrderOut)
def update_status(
    order_id: int,
    status_update: schemas.OrderStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Move a paid order along fulfilment (processing, shipped, delivered)."""
    try:
        db_order = update_order_status(db, order_id, status_update.status.value)
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.detail())
    except TransientStoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service is temporarily unavailable. Please try again.",
        )
    return schemas.OrderOut.from_order(db_order)


@router.patch("/{order_id:int}/cancel", response_model=schemas.OrderOut)
def cancel(
    order_id: int,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel an unpaid order. Its items go back into stock."""
    _owned_order_or_404(db, order_id, current_user)
    try:
        db_order = cancel_order(db, order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.detail())
    except TransientStoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service is temporarily unavailable. Please try again.",
        )
    return schemas.OrderOut.from_order(db_order)
