"""Unit tests for the Paystack adapter.

``httpx.Client.post``/``get`` are monkeypatched so no network is used; the
tests assert what is sent to the provider and how its answers are mapped.
"""

import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from apps.common.errors import GatewayError, ValidationError
from apps.payments.paystack import PaystackConfig, PaystackGateway

SECRET = "sk_test_unit"


class DummyResp:
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=self)

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture
def gateway():
    return PaystackGateway(
        PaystackConfig(secret_key=SECRET, base_url="https://paystack.test/", callback_url="https://shop.test/cb")
    )


def test_initialize_sends_kobo_and_bearer(monkeypatch, gateway):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(
            200,
            {
                "status": True,
                "data": {"authorization_url": "https://checkout/abc", "access_code": "ac_1", "reference": "PAY_1"},
            },
        )

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    tx = gateway.initialize_transaction(Decimal("2500.50"), "a@b.test", "PAY_1", {"purpose": "book_order"})

    assert seen["url"] == "https://paystack.test/transaction/initialize"
    assert seen["json"]["amount"] == 250050
    assert seen["json"]["callback_url"] == "https://shop.test/cb"
    assert seen["json"]["metadata"] == {"purpose": "book_order"}
    assert seen["headers"]["Authorization"] == f"Bearer {SECRET}"
    assert tx.authorization_url == "https://checkout/abc"
    assert tx.access_code == "ac_1"


def test_initialize_without_callback_url(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(json=json)
        return DummyResp(200, {"status": True, "data": {}})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    tx = PaystackGateway(PaystackConfig(secret_key=SECRET)).initialize_transaction(
        Decimal("100"), "a@b.test", "PAY_2", {}
    )
    assert "callback_url" not in seen["json"]
    assert tx.reference == "PAY_2"


def test_provider_status_false_is_gateway_error(monkeypatch, gateway):
    monkeypatch.setattr(
        httpx.Client,
        "post",
        lambda self, url, json=None, headers=None, **kw: DummyResp(400, {"status": False, "message": "Invalid key"}),
        raising=True,
    )
    with pytest.raises(GatewayError) as exc:
        gateway.initialize_transaction(Decimal("100"), "a@b.test", "PAY_3", {})
    assert exc.value.message == "Invalid key"


def test_transport_error_is_gateway_error(monkeypatch, gateway):
    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(GatewayError):
        gateway.initialize_transaction(Decimal("100"), "a@b.test", "PAY_4", {})


def test_non_json_body_is_gateway_error(monkeypatch, gateway):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, None), raising=True)
    with pytest.raises(GatewayError):
        gateway.verify_transaction("PAY_5")


def test_verify_maps_success(monkeypatch, gateway):
    seen = {}

    def fake_get(self, url, headers=None, **kw):
        seen["url"] = url
        return DummyResp(
            200,
            {
                "status": True,
                "data": {
                    "status": "success",
                    "amount": 200000,
                    "currency": "NGN",
                    "reference": "PAY_6",
                    "paid_at": "2024-05-01T10:00:00.000Z",
                    "customer": {"email": "a@b.test", "first_name": "Ada", "last_name": "Obi", "id": 7},
                },
            },
        )

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)

    v = gateway.verify_transaction("PAY_6")

    assert seen["url"] == "https://paystack.test/transaction/verify/PAY_6"
    assert v.success is True
    assert v.status == "successful"
    assert v.amount == Decimal("2000.00")
    assert v.paid_at is not None and v.paid_at.year == 2024
    assert v.customer == {"email": "a@b.test", "name": "Ada Obi"}


@pytest.mark.parametrize(
    "provider_status, normalized",
    [("failed", "failed"), ("abandoned", "pending"), ("ongoing", "pending")],
)
def test_verify_non_success_statuses(monkeypatch, gateway, provider_status, normalized):
    monkeypatch.setattr(
        httpx.Client,
        "get",
        lambda self, url, headers=None, **kw: DummyResp(
            200, {"status": True, "data": {"status": provider_status, "reference": "PAY_7"}}
        ),
        raising=True,
    )
    v = gateway.verify_transaction("PAY_7")
    assert v.success is False
    assert v.status == normalized
    assert v.amount is None


def test_webhook_signature(gateway):
    raw = b'{"event":"charge.success","data":{"reference":"PAY_8"}}'
    good = hmac.new(SECRET.encode(), raw, hashlib.sha512).hexdigest()

    assert gateway.verify_webhook_signature(good, raw) is True
    assert gateway.verify_webhook_signature(good, raw + b" ") is False
    assert gateway.verify_webhook_signature("", raw) is False


def test_non_ascii_signature_is_a_mismatch(gateway):
    raw = b'{"event":"charge.success","data":{"reference":"PAY_8"}}'
    assert gateway.verify_webhook_signature("sig\u00e9", raw) is False
    assert gateway.verify_webhook_signature("\u00e9" * 128, raw) is False


def test_webhook_signature_without_secret_is_rejected():
    raw = b"{}"
    sig = hmac.new(b"", raw, hashlib.sha512).hexdigest()
    assert PaystackGateway(PaystackConfig(secret_key="")).verify_webhook_signature(sig, raw) is False


def test_webhook_event_mapping(gateway):
    ok = gateway.process_webhook_event(
        {"event": "charge.success", "data": {"reference": "PAY_9", "amount": 150000, "paid_at": "2024-05-01T10:00:00Z"}}
    )
    assert ok.status == "successful"
    assert ok.amount == Decimal("1500.00")
    assert ok.paid_at.year == 2024

    failed = gateway.process_webhook_event({"event": "transaction.failed", "data": {"tx_ref": "PAY_10"}})
    assert failed.status == "failed"
    assert failed.reference == "PAY_10"
    assert failed.paid_at is None

    other = gateway.process_webhook_event(json.loads('{"event": "transfer.success", "data": {"reference": "PAY_11"}}'))
    assert other.status == "pending"


def test_impossible_paid_at_falls_back_to_now(gateway):
    event = gateway.process_webhook_event(
        {"event": "charge.success", "data": {"reference": "PAY_12", "paid_at": "2024-13-45T00:00:00Z"}}
    )
    assert event.status == "successful"
    assert event.paid_at is not None
    assert event.paid_at.year >= 2025


@pytest.mark.parametrize("amount", ["12.5", "abc", "NaN"])
def test_webhook_with_invalid_amount_is_validation_error(gateway, amount):
    with pytest.raises(ValidationError):
        gateway.process_webhook_event({"event": "charge.success", "data": {"reference": "PAY_13", "amount": amount}})


def test_webhook_accepts_string_kobo_amount(gateway):
    event = gateway.process_webhook_event({"event": "charge.success", "data": {"reference": "PAY_14", "amount": "150000"}})
    assert event.amount == Decimal("1500.00")


def test_verify_with_invalid_fields(monkeypatch, gateway):
    payload = {"status": True, "data": {"status": "success", "reference": "PAY_15", "paid_at": "2024-02-30T10:00:00Z"}}
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, payload), raising=True)

    v = gateway.verify_transaction("PAY_15")
    assert v.success is True
    assert v.paid_at is None

    payload["data"]["amount"] = "12.5"
    with pytest.raises(GatewayError):
        gateway.verify_transaction("PAY_15")
