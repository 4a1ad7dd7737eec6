"""Pydantic schemas for the orders API.

Request DTOs validate incoming payloads before they reach the domain
service; ``OrderReadDTO`` shapes the JSON returned for an order. Money is
exposed in major units (``Decimal``, rendered as a string) while the domain
works in minor units.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from apps.common.money import to_major

from .domain import DeliveryType, Order, OrderStatus


class OrderItemIn(BaseModel):
    """Input schema for a single order line.

    Attributes:
        book_id: Catalog id of the book, surrounding whitespace stripped.
        quantity: Number of copies, at least 1.
    """

    book_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(ge=1)

    @field_validator("book_id")
    @classmethod
    def strip_book_id(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("book_id must not be blank")
        return v2


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    Home delivery requires an address, a city and a recipient; pickup orders
    ignore the delivery fields.
    """

    items: list[OrderItemIn] = Field(min_length=1)
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery_address: str = Field(default="", max_length=500)
    delivery_city: str = Field(default="", max_length=100)
    delivery_state: str = Field(default="", max_length=100)
    recipient_name: str = Field(default="", max_length=100)
    recipient_phone: str = Field(default="", max_length=20)
    customer_notes: str = Field(default="", max_length=500)

    @model_validator(mode="after")
    def check_delivery_fields(self):
        if self.delivery_type == DeliveryType.HOME_DELIVERY:
            missing = [
                name
                for name in ("delivery_address", "delivery_city", "recipient_name")
                if not getattr(self, name).strip()
            ]
            if missing:
                raise ValueError(f"Home delivery requires: {', '.join(missing)}")
        return self


class UpdateStatusDTO(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class ProcessPaymentDTO(BaseModel):
    payment_method: str = Field(min_length=1, max_length=32)
    payment_ref: str = Field(min_length=1, max_length=64)

    @field_validator("payment_method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.strip().upper()


class OrderItemOut(BaseModel):
    book_id: str
    title: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderReadDTO(BaseModel):
    """Schema for returning order data in API responses."""

    id: str
    order_number: str
    owner_id: str
    status: OrderStatus
    payment_status: str
    payment_method: Optional[str] = None
    payment_ref: Optional[str] = None
    delivery_type: DeliveryType
    delivery_address: str = ""
    delivery_city: str = ""
    delivery_state: str = ""
    recipient_name: str = ""
    recipient_phone: str = ""
    customer_notes: str = ""
    admin_notes: str = ""
    items: list[OrderItemOut]
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    currency: str
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            order_number=order.order_number,
            owner_id=order.owner_id,
            status=order.status,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method or None,
            payment_ref=order.payment_ref or None,
            delivery_type=order.delivery_type,
            delivery_address=order.delivery.address,
            delivery_city=order.delivery.city,
            delivery_state=order.delivery.state,
            recipient_name=order.delivery.recipient_name,
            recipient_phone=order.delivery.recipient_phone,
            customer_notes=order.delivery.customer_notes,
            admin_notes=order.admin_notes,
            items=[
                OrderItemOut(
                    book_id=it.book_id,
                    title=it.title,
                    quantity=it.quantity,
                    unit_price=to_major(it.unit_price_minor),
                    subtotal=to_major(it.subtotal_minor),
                )
                for it in order.items
            ],
            subtotal=to_major(order.subtotal_minor),
            delivery_fee=to_major(order.delivery_fee_minor),
            total=to_major(order.total_minor),
            currency=order.currency,
            created_at=order.created_at,
            paid_at=order.paid_at,
            completed_at=order.completed_at,
            cancelled_at=order.cancelled_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
