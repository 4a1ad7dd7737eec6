import httpx
import pytest

from apps.common.errors import UpstreamUnavailable
from apps.orders.domain import OrderItem
from gateway.resilience import CircuitBreaker, CircuitOpenError, get_breaker


class Resp:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body or {}

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=self)


def test_inventory_retries_on_5xx(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    calls = {"n": 0, "retry_headers": []}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        calls["retry_headers"].append(headers["X-Retry-Count"])
        return Resp(500) if calls["n"] == 1 else Resp(200, {"applied": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpInventoryClient

    HttpInventoryClient(base_url="http://x").decrement("o-1", [OrderItem("bk-1", 1)])
    assert calls["n"] == 2
    assert calls["retry_headers"] == ["0", "1"]
    assert get_breaker("inventory").state == "CLOSED"


def test_no_retry_on_business_status(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        return Resp(409, {"detail": "INSUFFICIENT_STOCK", "book_id": "bk-1"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.common.errors import InsufficientStock
    from apps.orders.http_adapters import HttpInventoryClient

    with pytest.raises(InsufficientStock):
        HttpInventoryClient(base_url="http://x").decrement("o-1", [OrderItem("bk-1", 1)])
    assert calls["n"] == 1


def test_exhausted_5xx_opens_circuit_then_fails_fast(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 0
    calls = {"n": 0}

    def fake_post(self, url, json=None, headers=None, **kwargs):
        calls["n"] += 1
        return Resp(503)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    from apps.orders.http_adapters import HttpInventoryClient

    breaker = get_breaker("inventory")
    monkeypatch.setattr(breaker, "fail_threshold", 2)
    client = HttpInventoryClient(base_url="http://x")
    for _ in range(2):
        with pytest.raises(UpstreamUnavailable):
            client.decrement("o-1", [OrderItem("bk-1", 1)])
    assert breaker.state == "OPEN"

    with pytest.raises(UpstreamUnavailable):
        client.decrement("o-1", [OrderItem("bk-1", 1)])
    assert calls["n"] == 2


def test_breaker_half_open_probe(monkeypatch):
    clock = {"t": 100.0}
    monkeypatch.setattr("gateway.resilience.time.monotonic", lambda: clock["t"])
    cb = CircuitBreaker("probe", fail_threshold=1, reset_timeout=5)

    cb.before_call()
    cb.on_failure()
    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        cb.before_call()

    clock["t"] += 5
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(CircuitOpenError):
        cb.before_call()  # one probe at a time

    cb.on_failure()
    assert cb.state == "OPEN"

    clock["t"] += 5
    cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"
