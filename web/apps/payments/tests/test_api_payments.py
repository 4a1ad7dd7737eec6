"""API tests for the payments endpoints and the health probe.

Paystack is reached through a monkeypatched ``httpx.Client``; webhooks are
signed with the test secret configured in ``conftest.py``.
"""

import hashlib
import hmac
import json

import httpx
import pytest

INITIATE_URL = "/api/payments/initiate/"
VERIFY_URL = "/api/payments/verify/"
WEBHOOK_URL = "/api/payments/webhook/"
MINE_URL = "/api/payments/mine/"
STATS_URL = "/api/payments/stats/"

SECRET = "sk_test_secret"


class DummyResp:
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=self)

    def json(self):
        return self._json


@pytest.fixture
def paystack(monkeypatch):
    """Fake provider: answers initialize and verify, records what was sent."""
    state = {"initialized": [], "status": "ongoing"}

    def fake_post(self, url, json=None, headers=None, **kw):
        state["initialized"].append(json)
        ref = json["reference"]
        return DummyResp(
            200,
            {
                "status": True,
                "data": {"authorization_url": f"https://checkout.paystack.test/{ref}", "access_code": "ac", "reference": ref},
            },
        )

    def fake_get(self, url, headers=None, **kw):
        ref = url.rsplit("/", 1)[-1]
        amount = state["initialized"][-1]["amount"] if state["initialized"] else 0
        return DummyResp(
            200,
            {"status": True, "data": {"status": state["status"], "reference": ref, "amount": amount, "currency": "NGN"}},
        )

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    return state


def _signed_webhook(client, payload, secret=SECRET):
    raw = json.dumps(payload).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha512).hexdigest()
    return client.post(WEBHOOK_URL, data=raw, content_type="application/json", HTTP_X_PAYSTACK_SIGNATURE=sig)


def _create_order(client, headers):
    r = client.post(
        "/api/orders/",
        data={"items": [{"book_id": "bk-1", "quantity": 2}]},
        content_type="application/json",
        **headers,
    )
    assert r.status_code == 201, r.json()
    return r.json()


def _initiate(client, headers, **body):
    data = {"amount": "2000.00", "payment_method": "paystack", "purpose": "book_order", **body}
    return client.post(INITIATE_URL, data=data, content_type="application/json", **headers)


@pytest.mark.django_db
def test_initiate_returns_checkout_and_pending_payment(client, member, paystack):
    r = _initiate(client, member, reference_id="order-x")

    assert r.status_code == 201, r.json()
    body = r.json()
    ref = body["payment"]["payment_ref"]
    assert body["reference"] == ref
    assert body["authorization_url"].endswith(ref)
    assert body["payment"]["status"] == "PENDING"
    assert body["payment"]["amount"] == "2000.00"
    assert paystack["initialized"][0]["amount"] == 200000
    assert paystack["initialized"][0]["email"] == "member@example.com"


@pytest.mark.django_db
def test_initiate_validation(client, member, as_user, paystack):
    assert _initiate(client, member, amount="50").status_code == 400
    assert _initiate(client, member, amount="100.555").status_code == 400

    r = _initiate(client, member, payment_method="CASH")
    assert r.status_code == 400
    assert r.json()["detail"] == "UNSUPPORTED_METHOD"

    no_email = as_user(user_id="u-9", email=None)
    r = _initiate(client, no_email)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"
    assert _initiate(client, no_email, email="payer@example.com").status_code == 201

    assert paystack["initialized"][-1]["email"] == "payer@example.com"


@pytest.mark.django_db
def test_initiate_requires_identity(client, paystack):
    assert _initiate(client, {}).status_code == 401


@pytest.mark.django_db
def test_gateway_outage_is_502(client, member, monkeypatch):
    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    r = _initiate(client, member)
    assert r.status_code == 502
    assert r.json()["detail"] == "GATEWAY_ERROR"
    assert client.get(MINE_URL, **member).json()["count"] == 1


@pytest.mark.django_db
def test_verify_settles_payment_and_pays_order(client, member, admin, paystack):
    order = _create_order(client, member)
    ref = _initiate(client, member, amount=order["total"], reference_id=order["id"]).json()["payment"]["payment_ref"]

    pending = client.post(VERIFY_URL, data={"payment_ref": ref}, content_type="application/json", **member)
    assert pending.status_code == 200
    assert pending.json()["payment"]["status"] == "PENDING"
    assert pending.json()["verification"]["success"] is False

    paystack["status"] = "success"
    done = client.post(VERIFY_URL, data={"payment_ref": ref}, content_type="application/json", **member)
    body = done.json()
    assert body["payment"]["status"] == "SUCCESSFUL"
    assert body["payment"]["paid_at"]
    assert body["verification"]["amount"] == order["total"]

    paid = client.get(f"/api/orders/{order['id']}/", **member).json()
    assert paid["payment_status"] == "SUCCESSFUL"
    assert paid["payment_ref"] == ref


@pytest.mark.django_db
def test_verify_unknown_reference_is_404(client, member, paystack):
    r = client.post(VERIFY_URL, data={"payment_ref": "PAY_0_nothing"}, content_type="application/json", **member)
    assert r.status_code == 404


@pytest.mark.django_db
def test_webhook_marks_order_paid_once(client, member, paystack):
    order = _create_order(client, member)
    ref = _initiate(client, member, amount=order["total"], reference_id=order["id"]).json()["payment"]["payment_ref"]
    event = {"event": "charge.success", "data": {"reference": ref, "amount": 200000, "paid_at": "2024-05-01T10:00:00Z"}}

    first = _signed_webhook(client, event)
    assert first.status_code == 200
    assert first.json() == {"status": "success", "payment_ref": ref, "payment_status": "SUCCESSFUL"}
    paid_at = client.get(MINE_URL, **member).json()["results"][0]["paid_at"]

    second = _signed_webhook(client, event)
    assert second.status_code == 200
    assert client.get(MINE_URL, **member).json()["results"][0]["paid_at"] == paid_at

    paystack["status"] = "success"
    client.post(VERIFY_URL, data={"payment_ref": ref}, content_type="application/json", **member)
    assert client.get(MINE_URL, **member).json()["results"][0]["paid_at"] == paid_at

    paid = client.get(f"/api/orders/{order['id']}/", **member).json()
    assert paid["payment_status"] == "SUCCESSFUL"


@pytest.mark.django_db
def test_webhook_bad_or_missing_signature_rejected(client, member, paystack):
    ref = _initiate(client, member).json()["payment"]["payment_ref"]
    event = {"event": "charge.success", "data": {"reference": ref}}

    forged = _signed_webhook(client, event, secret="not-the-secret")
    assert forged.status_code == 400
    assert forged.json()["detail"] == "INVALID_SIGNATURE"

    unsigned = client.post(WEBHOOK_URL, data=json.dumps(event), content_type="application/json")
    assert unsigned.status_code == 400
    assert unsigned.json()["detail"] == "INVALID_SIGNATURE"

    assert client.get(MINE_URL, **member).json()["results"][0]["status"] == "PENDING"


@pytest.mark.django_db
def test_webhook_for_unknown_reference_is_404(client, paystack):
    r = _signed_webhook(client, {"event": "charge.success", "data": {"reference": "PAY_0_ghost"}})
    assert r.status_code == 404


@pytest.mark.django_db
def test_my_payments_are_scoped_to_owner(client, member, other_member, paystack):
    _initiate(client, member)
    _initiate(client, member, amount="150")
    _initiate(client, other_member)

    mine = client.get(MINE_URL, {"page_size": 1}, **member).json()
    assert mine["count"] == 2
    assert len(mine["results"]) == 1
    assert client.get(MINE_URL, **other_member).json()["count"] == 1
    assert client.get(MINE_URL, {"page": 0}, **member).status_code == 400


@pytest.mark.django_db
def test_stats_are_staff_only(client, member, admin, paystack):
    ref = _initiate(client, member).json()["payment"]["payment_ref"]
    _signed_webhook(client, {"event": "charge.success", "data": {"reference": ref}})
    _initiate(client, member, amount="500")

    assert client.get(STATS_URL, **member).status_code == 403

    stats = client.get(STATS_URL, **admin).json()
    assert stats["total_payments"] == 2
    assert stats["successful_payments"] == 1
    assert stats["revenue_minor"] == 200000
    assert stats["revenue"] == "2000.00"


@pytest.mark.django_db
def test_health_reports_db_and_paystack(client, settings):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json()["components"] == {"db": {"ok": True}, "paystack": {"configured": True}}

    settings.PAYSTACK_SECRET_KEY = ""
    assert client.get("/health/").json()["components"]["paystack"]["configured"] is False
