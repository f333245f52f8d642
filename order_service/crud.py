from sqlalchemy.orm import Session
from .models import Order
from typing import List, Optional


def get_order(db: Session, order_id: int) -> Optional[Order]:

    return db.query(Order).filter(Order.id == order_id).first()


def get_orders(db: Session, skip: int = 0, limit: int = 100) -> List[Order]:

    return db.query(Order).order_by(Order.id.desc()).offset(skip).limit(limit).all()


def get_orders_by_user(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:

    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_order_count(db: Session) -> int:

    return db.query(Order).count()


def get_user_order_count(db: Session, user_id: int) -> int:

    return db.query(Order).filter(Order.user_id == user_id).count()
