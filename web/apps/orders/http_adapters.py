"""HTTP clients for the inventory service.

Concrete implementations of ``CatalogPort`` and ``InventoryPort`` using
``httpx`` through ``gateway.resilience.send_with_retry``, which adds:

- Request correlation: ``X-Request-ID`` from the ContextVar set by the
    gateway middleware.
- A circuit breaker shared by every call to the inventory service.
- Bounded retries with exponential backoff for transport errors and 5xx.

Ledger calls carry the order id, so a retried request after a lost
response is applied at most once by the inventory service.
"""

import logging
from typing import List, Optional

import httpx
from django.conf import settings

from apps.common.errors import InsufficientStock, UpstreamUnavailable
from gateway.resilience import CircuitOpenError, get_breaker, send_with_retry

from .domain import Book, CatalogPort, InventoryPort, OrderItem

logger = logging.getLogger("orders.inventory")


def _items_payload(items: List[OrderItem]) -> list[dict]:
    return [{"book_id": i.book_id, "quantity": i.quantity} for i in items]


class _InventoryHttp:
    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.breaker = get_breaker("inventory")

    def _call(self, send, business_statuses=()) -> httpx.Response:
        try:
            return send_with_retry(
                self.breaker, send, timeout=self.timeout, business_statuses=business_statuses
            )
        except CircuitOpenError as e:
            raise UpstreamUnavailable("Inventory service circuit is open", service="inventory") from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable("Inventory service unreachable", service="inventory") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"Inventory service returned {e.response.status_code}", service="inventory"
            ) from e


class HttpCatalogClient(_InventoryHttp, CatalogPort):
    """Reads books from ``GET /books/{id}`` on the inventory service."""

    def get_book(self, book_id: str) -> Optional[Book]:
        resp = self._call(
            lambda client, headers: client.get(f"{self.base_url}/books/{book_id}", headers=headers),
            business_statuses=(404,),
        )
        if resp.status_code == 404:
            return None
        data = resp.json()
        return Book(
            id=str(data["id"]),
            title=data.get("title", ""),
            price_minor=int(data["price_minor"]),
            stock_quantity=int(data["stock_quantity"]),
            is_active=bool(data.get("is_active", True)),
        )


class HttpInventoryClient(_InventoryHttp, InventoryPort):
    """Drives the stock ledger through ``POST /decrement`` and ``POST /restore``."""

    def decrement(self, order_id: str, items: List[OrderItem]) -> None:
        """Remove stock for all items in one all-or-nothing call.

        Business mappings:
        - 200 → applied (or already applied for this order)
        - 409 → ``InsufficientStock`` for the reported book; not a circuit failure

        Raises:
            InsufficientStock: The ledger rejected the batch.
            UpstreamUnavailable: Transport errors, 5xx after retries, or open circuit.
        """
        payload = {"order_id": order_id, "items": _items_payload(items)}
        resp = self._call(
            lambda client, headers: client.post(f"{self.base_url}/decrement", json=payload, headers=headers),
            business_statuses=(409,),
        )
        if resp.status_code == 409:
            body = resp.json()
            logger.info("stock decrement rejected", extra={"order_id": order_id, "book_id": body.get("book_id")})
            raise InsufficientStock(str(body.get("book_id", "")))
        logger.info("stock decremented", extra={"order_id": order_id, "applied": resp.json().get("applied")})

    def restore(self, order_id: str, items: List[OrderItem]) -> bool:
        payload = {"order_id": order_id, "items": _items_payload(items)}
        resp = self._call(
            lambda client, headers: client.post(f"{self.base_url}/restore", json=payload, headers=headers),
        )
        applied = bool(resp.json().get("applied", False))
        logger.info("stock restored", extra={"order_id": order_id, "applied": applied})
        return applied
