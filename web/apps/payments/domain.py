"""Domain models, ports and reconciliation service for payments.

The ``PaymentService`` owns local ``Payment`` records and drives them to a
terminal state from either a user-initiated verification or an
asynchronous provider webhook. Settlement is an idempotent merge keyed by
``(payment_ref, target_status)``: once a payment is SUCCESSFUL nothing can
move it again, and the fulfillment hook fires only in the transaction that
made it SUCCESSFUL.
"""

import json
import logging
import secrets
import string
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from apps.common.errors import NotFound, SignatureError, UnsupportedMethod, ValidationError
from apps.common.money import DEFAULT_CURRENCY, to_major, to_minor

logger = logging.getLogger("payments")


# ---- Enums ----
class PaymentStatus(str, Enum):
    """Payment lifecycle: PENDING -> SUCCESSFUL | FAILED. SUCCESSFUL is terminal."""

    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    PAYSTACK = "PAYSTACK"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"


SUPPORTED_METHODS = frozenset({PaymentMethod.PAYSTACK})

# Normalized gateway status -> local status.
GATEWAY_STATUS_MAP = {
    "successful": PaymentStatus.SUCCESSFUL,
    "failed": PaymentStatus.FAILED,
    "pending": PaymentStatus.PENDING,
}


# ---- Entities / DTOs ----
@dataclass
class Payment:
    id: Optional[str]
    owner_id: str
    amount_minor: int
    method: PaymentMethod
    payment_ref: str
    purpose: str
    reference_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    currency: str = DEFAULT_CURRENCY
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def amount(self) -> Decimal:
        return to_major(self.amount_minor)


@dataclass(frozen=True)
class InitializedTransaction:
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class VerificationResult:
    """Provider view of a transaction, amounts already in major units."""

    success: bool
    provider_status: str
    amount: Optional[Decimal]
    reference: str
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    customer: dict = field(default_factory=dict)
    metadata: Any = None

    @property
    def status(self) -> str:
        """Normalized status: successful, failed or pending."""
        if self.success:
            return "successful"
        if self.provider_status == "failed":
            return "failed"
        return "pending"


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    reference: Optional[str]
    status: str
    amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    customer: Any = None
    metadata: Any = None


@dataclass(frozen=True)
class InitiatedPayment:
    payment: Payment
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class VerifiedPayment:
    payment: Payment
    verification: VerificationResult


@dataclass(frozen=True)
class PaymentPage:
    items: List[Payment]
    total: int
    page: int
    page_size: int


# ---- Ports (DIP) ----
class PaymentGatewayPort(Protocol):
    """Port describing the external payment provider."""

    def initialize_transaction(
        self, amount: Decimal, email: str, reference: str, metadata: dict
    ) -> InitializedTransaction: ...

    def verify_transaction(self, reference: str) -> VerificationResult: ...

    def verify_webhook_signature(self, signature: str, raw_body: bytes) -> bool: ...

    def process_webhook_event(self, event: dict) -> WebhookEvent: ...


class PaymentRepositoryPort(Protocol):
    """Persistence for payments. ``get_for_update`` locks until ``atomic()`` exits."""

    def atomic(self) -> AbstractContextManager: ...

    def add(self, payment: Payment) -> Payment: ...

    def get_by_ref(self, payment_ref: str) -> Optional[Payment]: ...

    def get_for_update(self, payment_ref: str) -> Optional[Payment]: ...

    def save(self, payment: Payment) -> Payment: ...

    def list_by_owner(self, owner_id: str, page: int = 1, page_size: int = 20) -> PaymentPage: ...

    def stats(self) -> dict: ...


FulfillmentHook = Callable[[Payment], None]


def generate_payment_ref() -> str:
    """Return a fresh reference: ``PAY_<epoch millis>_<9 random chars>``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"PAY_{int(time.time() * 1000)}_{suffix}"


def _parse_metadata(raw) -> dict:
    """Accept a dict or a JSON object string; anything else is ignored."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.info("ignoring non-JSON payment metadata")
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---- Domain service ----
class PaymentService:
    """Reconciliation engine between local payments and the provider.

    Args:
        gateway: Payment provider adapter.
        payments: Repository persisting payments.
        hooks: Mapping of payment ``purpose`` to a fulfillment callable run
            once, inside the settlement transaction, when a payment of that
            purpose becomes SUCCESSFUL.
        require_signature: When True a webhook without a signature is
            rejected as well as one with a bad signature.
    """

    def __init__(
        self,
        gateway: PaymentGatewayPort,
        payments: PaymentRepositoryPort,
        hooks: Optional[dict[str, FulfillmentHook]] = None,
        require_signature: bool = False,
        ref_factory: Callable[[], str] = generate_payment_ref,
    ):
        self.gateway = gateway
        self.payments = payments
        self.hooks = hooks or {}
        self.require_signature = require_signature
        self.ref_factory = ref_factory

    def initiate_payment(
        self,
        owner_id: str,
        email: str,
        amount: Decimal,
        method: PaymentMethod,
        purpose: str,
        reference_id: Optional[str] = None,
        metadata=None,
    ) -> InitiatedPayment:
        """Create a PENDING payment and open a provider transaction for it.

        The local record is committed before the provider call so an outage
        still leaves a traceable payment that can be verified or retried.

        Raises:
            UnsupportedMethod: ``method`` is not PAYSTACK.
            ValidationError: Non-positive amount.
            GatewayError: Provider call failed; the payment stays PENDING.
        """
        method = PaymentMethod(method)
        if method not in SUPPORTED_METHODS:
            raise UnsupportedMethod("Only Paystack payment method is currently supported")
        amount_minor = to_minor(amount)
        if amount_minor <= 0:
            raise ValidationError("Amount must be positive")

        extra = _parse_metadata(metadata)
        with self.payments.atomic():
            payment = self.payments.add(
                Payment(
                    id=None,
                    owner_id=owner_id,
                    amount_minor=amount_minor,
                    method=method,
                    payment_ref=self.ref_factory(),
                    purpose=purpose,
                    reference_id=reference_id,
                    metadata=extra,
                )
            )
        logger.info(
            "payment initiated",
            extra={"payment_ref": payment.payment_ref, "amount_minor": amount_minor, "purpose": purpose},
        )

        provider_metadata = {"owner_id": owner_id, "payment_id": payment.id, "purpose": purpose}
        if reference_id:
            provider_metadata["reference_id"] = reference_id
        provider_metadata.update(extra)

        tx = self.gateway.initialize_transaction(
            payment.amount, email, payment.payment_ref, provider_metadata
        )
        return InitiatedPayment(
            payment=payment,
            authorization_url=tx.authorization_url,
            access_code=tx.access_code,
            reference=tx.reference,
        )

    def verify_payment(self, payment_ref: str) -> VerifiedPayment:
        """Ask the provider about a payment and settle the local record.

        Raises:
            NotFound: No local payment has this reference.
            GatewayError: Provider call failed; local state is unchanged.
        """
        payment = self.payments.get_by_ref(payment_ref)
        if payment is None:
            raise NotFound("Payment not found")

        verification = self.gateway.verify_transaction(payment_ref)
        if payment.status == PaymentStatus.SUCCESSFUL:
            return VerifiedPayment(payment=payment, verification=verification)

        settled = self._settle(
            payment_ref, GATEWAY_STATUS_MAP[verification.status], verification.paid_at
        )
        return VerifiedPayment(payment=settled, verification=verification)

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> dict:
        """Apply a provider webhook to the matching local payment.

        The signature (when present, or always if ``require_signature``) is
        checked against the raw body before anything is parsed or looked up.

        Raises:
            SignatureError: Signature missing (when required) or invalid.
            ValidationError: Body is not JSON or carries no reference.
            NotFound: No local payment has the event's reference.
        """
        if signature or self.require_signature:
            if not signature or not self.gateway.verify_webhook_signature(signature, raw_body):
                logger.warning(
                    "webhook signature rejected, possible tampering",
                    extra={"signature_present": bool(signature)},
                )
                raise SignatureError("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except (TypeError, ValueError):
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(body, dict):
            raise ValidationError("Webhook body must be a JSON object")

        event = self.gateway.process_webhook_event(body)
        if not event.reference:
            raise ValidationError("Payment reference not found in webhook")

        if self.payments.get_by_ref(event.reference) is None:
            raise NotFound("Payment not found")

        payment = self._settle(event.reference, GATEWAY_STATUS_MAP[event.status], event.paid_at)
        return {"status": "success", "payment_ref": payment.payment_ref, "payment_status": payment.status.value}

    def _settle(
        self, payment_ref: str, target: PaymentStatus, paid_at: Optional[datetime]
    ) -> Payment:
        """Idempotently merge ``target`` into the stored payment.

        Under the row lock: a SUCCESSFUL payment is returned untouched, an
        equal status is a no-op, anything else is written. ``paid_at`` and
        the fulfillment hook only happen on the move into SUCCESSFUL.
        """
        with self.payments.atomic():
            payment = self.payments.get_for_update(payment_ref)
            if payment is None:
                raise NotFound("Payment not found")
            if payment.status == PaymentStatus.SUCCESSFUL or payment.status == target:
                return payment

            previous = payment.status
            payment.status = target
            if target == PaymentStatus.SUCCESSFUL:
                payment.paid_at = paid_at or datetime.now(timezone.utc)
            payment = self.payments.save(payment)

            if target == PaymentStatus.SUCCESSFUL:
                hook = self.hooks.get(payment.purpose)
                if hook is not None:
                    hook(payment)

        logger.info(
            "payment settled",
            extra={"payment_ref": payment_ref, "from": previous.value, "to": target.value},
        )
        return payment

    def list_owner_payments(self, owner_id: str, page: int = 1, page_size: int = 20) -> PaymentPage:
        return self.payments.list_by_owner(owner_id, page=page, page_size=page_size)

    def stats(self) -> dict:
        return self.payments.stats()
