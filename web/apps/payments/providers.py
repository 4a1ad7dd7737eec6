"""Wiring for ``PaymentService``.

Builds the Paystack adapter from an explicit ``PaystackConfig`` read from
settings and registers fulfillment hooks per payment purpose. A successful
``book_order`` payment marks the referenced order as paid.
"""

from django.conf import settings

from apps.orders.providers import get_order_service

from .domain import PaymentService
from .paystack import PaystackConfig, PaystackGateway
from .repository import PaymentRepository

BOOK_ORDER_PURPOSE = "book_order"


def paystack_config() -> PaystackConfig:
    return PaystackConfig(
        secret_key=getattr(settings, "PAYSTACK_SECRET_KEY", ""),
        base_url=getattr(settings, "PAYSTACK_BASE_URL", "https://api.paystack.co"),
        callback_url=getattr(settings, "PAYSTACK_CALLBACK_URL", ""),
        timeout_secs=getattr(settings, "PAYSTACK_TIMEOUT_SECS", 10.0),
    )


def get_payment_service() -> PaymentService:
    """Return a PaymentService wired with Paystack and the ORM repository."""
    orders = get_order_service()
    return PaymentService(
        gateway=PaystackGateway(paystack_config()),
        payments=PaymentRepository(),
        hooks={BOOK_ORDER_PURPOSE: orders.apply_settled_payment},
        require_signature=getattr(settings, "PAYSTACK_REQUIRE_WEBHOOK_SIGNATURE", True),
    )
