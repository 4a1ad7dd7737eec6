"""Resilience helpers for outbound HTTP calls.

Shared by the inventory and payment-provider clients:

- ``CircuitBreaker`` per downstream dependency to avoid hammering an
    unhealthy service, with HALF_OPEN probing after a timeout.
- ``send_with_retry``: bounded retries with exponential backoff for
    transport errors and 5xx, with business statuses returned untouched.
- Request correlation: ``request_headers`` propagates ``X-Request-ID`` from
    the ContextVar set by the gateway middleware.
"""

import logging
import os
import sys
import threading
import time
from typing import Callable, Iterable, Optional

import httpx
from django.conf import settings

from .middleware import REQUEST_ID_CTX

logger = logging.getLogger("gateway.http")


class CircuitOpenError(RuntimeError):
    """Raised when a call is refused because the breaker is open or probing."""


def is_test_mode() -> bool:
    return (
        "pytest" in sys.modules
        or os.environ.get("PYTEST_CURRENT_TEST") is not None
        or os.environ.get("PYTEST_RUNNING") == "1"
    )


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; only one probe may be in
      flight; a failed probe re-opens the circuit.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Reserve a call slot and return the state at call time.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpenError(f"CIRCUIT_OPEN:{self.name}")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise CircuitOpenError(f"CIRCUIT_HALF_OPEN_BUSY:{self.name}")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False

    def reset(self):
        self.on_success()


_breakers: dict[str, CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def get_breaker(name: str) -> CircuitBreaker:
    """Return the process-wide breaker for a downstream service."""
    with _breakers_lock:
        if name not in _breakers:
            _breakers[name] = CircuitBreaker(
                name,
                getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
                getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
            )
        return _breakers[name]


# ---------------- Helpers ---------------- #

def request_headers(extra: Optional[dict] = None) -> dict:
    """Build outgoing headers with ``X-Request-ID`` plus any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def retry_policy() -> tuple[int, float]:
    """Return retry configuration as (max_retries, backoff_base_seconds).

    ``max_retries`` counts attempts after the first one.
    """
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def send_with_retry(
    breaker: CircuitBreaker,
    send: Callable[[httpx.Client, dict], httpx.Response],
    *,
    timeout: float,
    business_statuses: Iterable[int] = (),
    headers: Optional[dict] = None,
    retry: bool = True,
) -> httpx.Response:
    """Run ``send`` under the breaker with bounded retries.

    2xx and ``business_statuses`` are returned to the caller and count as a
    healthy dependency. Transport errors and 5xx are retried with
    exponential backoff; other statuses are raised immediately.

    Args:
        breaker: Circuit breaker of the target service.
        send: Callable performing the request with the given client and headers.
        timeout: Per-request timeout in seconds.
        business_statuses: Non-2xx statuses that carry a business outcome.
        headers: Extra headers for the request.
        retry: Disable to make exactly one attempt.

    Returns:
        httpx.Response: The final response.

    Raises:
        CircuitOpenError: If the breaker refuses the call.
        httpx.RequestError: Transport error after the last attempt.
        httpx.HTTPStatusError: Non-retriable or exhausted non-2xx response.
    """
    business = set(business_statuses)
    max_retries, backoff = retry_policy()
    if not retry:
        max_retries = 0
    if is_test_mode():
        backoff = 0.0
    tries = 0

    state = breaker.before_call()
    hdrs = request_headers({"X-Circuit-State": state, "X-Retry-Count": "0", **(headers or {})})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = send(client, hdrs)
                    if 200 <= resp.status_code < 300 or resp.status_code in business:
                        breaker.on_success()
                        return resp
                    if not should_retry(resp, None):
                        breaker.on_success()
                        resp.raise_for_status()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                hdrs["X-Retry-Count"] = str(tries)

                if tries > max_retries or not should_retry(resp, exc):
                    breaker.on_failure()
                    logger.error(
                        "downstream call failed",
                        extra={"circuit": breaker.name, "attempts": tries, "error": str(exc) if exc else resp.status_code},
                    )
                    if exc:
                        raise exc
                    resp.raise_for_status()
                    return resp

                sleep_s = backoff * (2 ** (tries - 1))
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                if not is_test_mode():
                    time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()
