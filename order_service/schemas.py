from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CartLineIn(BaseModel):
    """A requested cart line. ``name``/``price``/``image`` are client hints only."""
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., gt=0, description="Product quantity")
    name: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, ge=0, description="Unit price the client saw")
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    street: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: str = Field("India", max_length=100)


class OrderCreate(BaseModel):
    # emptiness is reported as EmptyCart (400) by the checkout, not as a 422
    order_items: List[CartLineIn] = Field(..., description="Cart lines")
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1, max_length=50)
    total_price: Optional[Decimal] = Field(None, ge=0, description="Client-computed total (advisory)")
    notes: Optional[str] = Field(None, max_length=500)
    mark_paid: bool = Field(False, description="Test-only immediate payment")


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    user_id: int
    items: List[OrderItemOut] = []
    total_price: Decimal
    payment_method: str
    payment_status: PaymentStatus
    status: OrderStatus
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipping_address: ShippingAddress
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order) -> "OrderOut":
        return cls(
            id=order.id,
            user_id=order.user_id,
            items=[OrderItemOut.model_validate(i) for i in order.items],
            total_price=order.total_price,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            status=order.status,
            payment_intent_id=order.payment_intent_id,
            paid_at=order.paid_at,
            shipping_address=ShippingAddress(
                street=order.shipping_street,
                city=order.shipping_city,
                state=order.shipping_state,
                zip_code=order.shipping_zip_code,
                country=order.shipping_country or "India",
            ),
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int


class PaymentResult(BaseModel):
    """Outcome reported by the payment provider for an existing order."""
    succeeded: bool
    transaction_id: Optional[str] = Field(None, max_length=255)
    amount: Optional[Decimal] = Field(None, ge=0)


class PaymentIntentOut(BaseModel):
    order_id: int
    payment_intent_id: str
    client_secret: str
    amount: int
    currency: str


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
