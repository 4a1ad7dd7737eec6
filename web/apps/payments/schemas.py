"""Pydantic schemas for the payments API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .domain import Payment, PaymentMethod

MIN_PAYMENT_AMOUNT = Decimal("100")


class InitiatePaymentDTO(BaseModel):
    """Schema for starting a payment.

    Attributes:
        amount: Amount in naira, at least 100, at most two decimal places.
        payment_method: Requested method; only PAYSTACK is processed.
        purpose: What the payment is for, e.g. ``book_order``.
        reference_id: Id of the paid-for entity, e.g. an order id.
        metadata: JSON object, or a JSON string holding one.
        email: Payer email when the identity gateway does not forward one.
    """

    amount: Decimal = Field(ge=MIN_PAYMENT_AMOUNT, decimal_places=2)
    payment_method: PaymentMethod
    purpose: str = Field(min_length=1, max_length=500)
    reference_id: Optional[str] = Field(default=None, max_length=64)
    metadata: Optional[Any] = None
    email: Optional[str] = Field(default=None, max_length=254)

    @field_validator("payment_method", mode="before")
    @classmethod
    def upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v


class VerifyPaymentDTO(BaseModel):
    payment_ref: str = Field(min_length=1, max_length=64)


class PaymentReadDTO(BaseModel):
    id: str
    payment_ref: str
    owner_id: str
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: str
    purpose: str
    reference_id: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentReadDTO":
        return cls(
            id=payment.id,
            payment_ref=payment.payment_ref,
            owner_id=payment.owner_id,
            amount=payment.amount,
            currency=payment.currency,
            method=payment.method,
            status=payment.status.value,
            purpose=payment.purpose,
            reference_id=payment.reference_id,
            metadata=payment.metadata,
            paid_at=payment.paid_at,
            created_at=payment.created_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
