"""Paystack adapter implementing ``PaymentGatewayPort``.

All calls go through ``gateway.resilience.send_with_retry`` with the
``paystack`` circuit breaker. Provider amounts are integer kobo; the
adapter converts to and from ``Decimal`` naira at this boundary only.
Failures of any kind surface as ``GatewayError`` so callers see one error
type regardless of whether the provider was unreachable or said no.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from django.utils.dateparse import parse_datetime

from apps.common.errors import GatewayError, ValidationError
from apps.common.money import to_major, to_minor
from gateway.resilience import CircuitOpenError, get_breaker, send_with_retry

from .domain import InitializedTransaction, VerificationResult, WebhookEvent

logger = logging.getLogger("payments.paystack")

SUCCESS_EVENTS = frozenset({"charge.success", "transaction.success"})
FAILED_EVENTS = frozenset({"charge.failed", "transaction.failed"})


@dataclass(frozen=True)
class PaystackConfig:
    """Explicit adapter configuration; the adapter never reads the environment."""

    secret_key: str
    base_url: str = "https://api.paystack.co"
    callback_url: str = ""
    timeout_secs: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


def _parse_time(value) -> Optional[datetime]:
    """Parse a provider timestamp; unparsable or impossible dates give None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_datetime(str(value))
    except ValueError:
        logger.warning("unparsable provider timestamp", extra={"value": str(value)})
        return None


def _kobo_to_major(value) -> Optional[Decimal]:
    """Convert a provider amount in kobo to naira.

    Raises:
        ValueError: The amount is not a whole number of kobo.
    """
    if value is None or value == "":
        return None
    try:
        kobo = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {value!r}") from e
    if not kobo.is_finite() or kobo != kobo.to_integral_value():
        raise ValueError(f"invalid amount: {value!r}")
    return to_major(int(kobo))


def _customer_view(customer) -> dict:
    if not isinstance(customer, dict):
        return {}
    email = customer.get("email")
    first = customer.get("first_name")
    name = f"{first} {customer.get('last_name') or ''}".strip() if first else email
    return {"email": email, "name": name}


class PaystackGateway:
    """HTTP client for the Paystack transaction API."""

    def __init__(self, config: PaystackConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.breaker = get_breaker("paystack")
        if not config.is_configured:
            logger.warning("Paystack secret key is not configured")

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.secret_key}"}

    def _call(self, send, action: str) -> dict:
        """Run a provider call and return the ``data`` object of a ``status: true`` body.

        Raises:
            GatewayError: Transport error, open circuit, HTTP error status or
                a ``status: false`` response.
        """
        try:
            resp = send_with_retry(
                self.breaker,
                send,
                timeout=self.config.timeout_secs,
                headers=self._auth_headers(),
                business_statuses=(400, 404),
            )
        except CircuitOpenError as e:
            logger.error("paystack circuit open", extra={"action": action})
            raise GatewayError(f"Failed to {action} payment with Paystack: circuit open") from e
        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            logger.error("paystack call failed", extra={"action": action, "error": str(e)})
            raise GatewayError(f"Failed to {action} payment with Paystack") from e

        try:
            body = resp.json()
        except ValueError as e:
            logger.error("paystack returned a non-JSON body", extra={"action": action, "status_code": resp.status_code})
            raise GatewayError(f"Failed to {action} payment with Paystack") from e
        if not body.get("status"):
            message = body.get("message") or f"Failed to {action} payment"
            logger.error("paystack rejected request", extra={"action": action, "provider_message": message})
            raise GatewayError(message)
        return body.get("data") or {}

    def initialize_transaction(
        self, amount: Decimal, email: str, reference: str, metadata: dict
    ) -> InitializedTransaction:
        """Open a transaction and return the hosted checkout details.

        Args:
            amount: Amount in naira; sent to Paystack in kobo.
            email: Customer email required by Paystack.
            reference: Our payment reference, reused as the provider reference.
            metadata: Free-form data echoed back by verify and webhooks.
        """
        payload = {
            "amount": to_minor(amount),
            "email": email,
            "reference": reference,
            "metadata": metadata,
        }
        if self.config.callback_url:
            payload["callback_url"] = self.config.callback_url
        data = self._call(
            lambda client, headers: client.post(
                f"{self.base_url}/transaction/initialize", json=payload, headers=headers
            ),
            "initialize",
        )
        return InitializedTransaction(
            authorization_url=data.get("authorization_url", ""),
            access_code=data.get("access_code", ""),
            reference=data.get("reference", reference),
        )

    def verify_transaction(self, reference: str) -> VerificationResult:
        data = self._call(
            lambda client, headers: client.get(
                f"{self.base_url}/transaction/verify/{reference}", headers=headers
            ),
            "verify",
        )
        provider_status = data.get("status") or ""
        try:
            amount = _kobo_to_major(data.get("amount"))
        except ValueError as e:
            logger.error(
                "paystack returned an invalid amount",
                extra={"reference": reference, "amount": str(data.get("amount"))},
            )
            raise GatewayError("Failed to verify payment with Paystack: invalid amount") from e
        return VerificationResult(
            success=provider_status == "success",
            provider_status=provider_status,
            amount=amount,
            reference=data.get("reference", reference),
            currency=data.get("currency"),
            paid_at=_parse_time(data.get("paid_at")),
            customer=_customer_view(data.get("customer")),
            metadata=data.get("metadata"),
        )

    def verify_webhook_signature(self, signature: str, raw_body: bytes) -> bool:
        """Check ``X-Paystack-Signature``: HMAC-SHA512 hex digest of the raw body.

        Returns False when no secret is configured, never treating an
        unverifiable request as authentic.
        """
        if not self.config.is_configured:
            logger.warning("webhook signature cannot be verified without a secret key")
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = hmac.new(
            self.config.secret_key.encode("utf-8"), raw_body, hashlib.sha512
        ).hexdigest()
        # compared as bytes so a non-ASCII header is a mismatch
        given = (signature or "").encode("utf-8", "replace")
        return hmac.compare_digest(expected.encode("ascii"), given)

    def process_webhook_event(self, event: dict) -> WebhookEvent:
        event_type = event.get("event") or ""
        data = event.get("data") or {}
        if not isinstance(data, dict):
            data = {}

        status = "pending"
        paid_at = None
        if event_type in SUCCESS_EVENTS:
            status = "successful"
            paid_at = _parse_time(data.get("paid_at")) or datetime.now(timezone.utc)
        elif event_type in FAILED_EVENTS:
            status = "failed"
        else:
            logger.warning("unhandled webhook event type", extra={"event_type": event_type})

        try:
            amount = _kobo_to_major(data.get("amount"))
        except ValueError as e:
            raise ValidationError("Invalid amount in webhook payload") from e
        return WebhookEvent(
            event_type=event_type,
            reference=data.get("reference") or data.get("tx_ref"),
            status=status,
            amount=amount,
            paid_at=paid_at,
            customer=data.get("customer"),
            metadata=data.get("metadata"),
        )
