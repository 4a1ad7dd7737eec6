"""In-process adapters for the payments domain ports.

``InMemoryPaymentRepository`` implements ``PaymentRepositoryPort`` without a
database, and ``StaticGateway`` is a scripted ``PaymentGatewayPort`` whose
answers are set by the caller. Intended for unit tests and local
development where Paystack is not reachable.
"""

import hashlib
import hmac
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from apps.common.errors import Conflict

from .domain import (
    InitializedTransaction,
    Payment,
    PaymentPage,
    PaymentStatus,
    VerificationResult,
    WebhookEvent,
)


class InMemoryPaymentRepository:
    def __init__(self):
        self._lock = threading.RLock()
        self._payments: Dict[str, Payment] = {}

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = {k: replace(v) for k, v in self._payments.items()}
            try:
                yield
            except BaseException:
                self._payments = snapshot
                raise

    def add(self, payment: Payment) -> Payment:
        with self._lock:
            if payment.payment_ref in self._payments:
                raise Conflict("Duplicate payment reference")
            stored = replace(payment, id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc))
            self._payments[stored.payment_ref] = stored
            return replace(stored)

    def get_by_ref(self, payment_ref: str) -> Optional[Payment]:
        p = self._payments.get(payment_ref)
        return replace(p) if p else None

    def get_for_update(self, payment_ref: str) -> Optional[Payment]:
        return self.get_by_ref(payment_ref)

    def save(self, payment: Payment) -> Payment:
        with self._lock:
            self._payments[payment.payment_ref] = replace(payment)
            return replace(payment)

    def list_by_owner(self, owner_id: str, page: int = 1, page_size: int = 20) -> PaymentPage:
        rows = sorted(
            (p for p in self._payments.values() if p.owner_id == owner_id),
            key=lambda p: p.created_at,
            reverse=True,
        )
        start = (page - 1) * page_size
        return PaymentPage(
            items=[replace(p) for p in rows[start : start + page_size]],
            total=len(rows),
            page=page,
            page_size=page_size,
        )

    def stats(self) -> dict:
        successful = [p for p in self._payments.values() if p.status == PaymentStatus.SUCCESSFUL]
        return {
            "total_payments": len(self._payments),
            "successful_payments": len(successful),
            "revenue_minor": sum(p.amount_minor for p in successful),
        }


class StaticGateway:
    """Gateway double: records initialize calls and answers verify from ``statuses``.

    ``statuses`` maps a reference to the provider status string
    (``success``, ``failed``, ``abandoned``...). Webhook signatures are
    real HMAC-SHA512 digests over ``secret``.
    """

    def __init__(self, secret: str = "whsec"):
        self.secret = secret
        self.initialized: list[dict] = []
        self.statuses: Dict[str, str] = {}
        self.amounts: Dict[str, Decimal] = {}

    def initialize_transaction(self, amount, email, reference, metadata) -> InitializedTransaction:
        self.initialized.append({"amount": amount, "email": email, "reference": reference, "metadata": metadata})
        self.amounts[reference] = amount
        return InitializedTransaction(
            authorization_url=f"https://checkout.test/{reference}",
            access_code=f"ac_{reference}",
            reference=reference,
        )

    def verify_transaction(self, reference: str) -> VerificationResult:
        status = self.statuses.get(reference, "ongoing")
        return VerificationResult(
            success=status == "success",
            provider_status=status,
            amount=self.amounts.get(reference),
            reference=reference,
            currency="NGN",
            paid_at=datetime.now(timezone.utc) if status == "success" else None,
        )

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self.secret.encode(), raw_body, hashlib.sha512).hexdigest()

    def verify_webhook_signature(self, signature: str, raw_body: bytes) -> bool:
        return hmac.compare_digest(self.sign(raw_body).encode(), (signature or "").encode("utf-8", "replace"))

    def process_webhook_event(self, event: dict) -> WebhookEvent:
        data = event.get("data") or {}
        kind = event.get("event", "")
        if kind.endswith(".success"):
            status, paid_at = "successful", datetime.now(timezone.utc)
        elif kind.endswith(".failed"):
            status, paid_at = "failed", None
        else:
            status, paid_at = "pending", None
        return WebhookEvent(event_type=kind, reference=data.get("reference"), status=status, paid_at=paid_at)
