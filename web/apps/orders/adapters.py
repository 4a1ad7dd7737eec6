"""In-process adapters for the orders domain ports.

``InMemoryInventory`` implements both ``CatalogPort`` and ``InventoryPort``
over a dict of books guarded by a lock, with the same all-or-nothing and
per-order idempotency rules as the inventory service. ``InMemoryOrderRepository``
implements ``OrderRepositoryPort`` without a database. They are intended
for unit tests and local development where external services are not
required.
"""

import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from apps.common.errors import Conflict, InsufficientStock
from apps.payments.domain import PaymentStatus

from .domain import Book, Order, OrderItem, OrderPage, OrderStatus


def _merge(items: List[OrderItem]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for it in items:
        merged[it.book_id] = merged.get(it.book_id, 0) + it.quantity
    return merged


class InMemoryInventory:
    """Catalog and inventory ledger backed by a dict of books."""

    def __init__(self, books: Optional[List[Book]] = None):
        self._lock = threading.Lock()
        self._books: Dict[str, Book] = {b.id: b for b in books or []}
        self._movements: set[tuple[str, str]] = set()

    def put(self, book: Book) -> None:
        with self._lock:
            self._books[book.id] = book

    def stock(self, book_id: str) -> int:
        return self._books[book_id].stock_quantity

    def get_book(self, book_id: str) -> Optional[Book]:
        return self._books.get(book_id)

    def decrement(self, order_id: str, items: List[OrderItem]) -> None:
        with self._lock:
            if (order_id, "DECREMENT") in self._movements:
                return
            wanted = _merge(items)
            for book_id in sorted(wanted):
                book = self._books.get(book_id)
                if book is None or not book.is_active or book.stock_quantity < wanted[book_id]:
                    raise InsufficientStock(book_id)
            for book_id, qty in wanted.items():
                book = self._books[book_id]
                self._books[book_id] = replace(book, stock_quantity=book.stock_quantity - qty)
            self._movements.add((order_id, "DECREMENT"))

    def restore(self, order_id: str, items: List[OrderItem]) -> bool:
        with self._lock:
            if (order_id, "DECREMENT") not in self._movements or (order_id, "RESTORE") in self._movements:
                return False
            for book_id, qty in _merge(items).items():
                book = self._books[book_id]
                self._books[book_id] = replace(book, stock_quantity=book.stock_quantity + qty)
            self._movements.add((order_id, "RESTORE"))
            return True


class InMemoryOrderRepository:
    """Dict-backed order store.

    ``atomic()`` serializes units of work with a re-entrant lock and rolls
    the whole store back when the block raises.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._orders: Dict[str, Order] = {}

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = {k: replace(v) for k, v in self._orders.items()}
            try:
                yield
            except BaseException:
                self._orders = snapshot
                raise

    def add(self, order: Order) -> Order:
        with self._lock:
            if any(o.order_number == order.order_number for o in self._orders.values()):
                raise Conflict("Duplicate order number", order_number=order.order_number)
            stored = replace(
                order,
                id=str(uuid.uuid4()),
                items=list(order.items),
                created_at=datetime.now(timezone.utc),
            )
            self._orders[stored.id] = stored
            return replace(stored)

    def get(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return replace(order) if order else None

    def get_for_update(self, order_id: str) -> Optional[Order]:
        return self.get(order_id)

    def save(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = replace(order)
            return replace(order)

    def list(
        self,
        *,
        owner_id=None,
        status=None,
        delivery_type=None,
        search=None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderPage:
        rows = [o for o in self._orders.values() if not o.is_deleted]
        if owner_id is not None:
            rows = [o for o in rows if o.owner_id == owner_id]
        if status is not None:
            rows = [o for o in rows if o.status == status]
        if delivery_type is not None:
            rows = [o for o in rows if o.delivery_type == delivery_type]
        if search:
            rows = [o for o in rows if search.lower() in o.order_number.lower()]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        start = (page - 1) * page_size
        return OrderPage(
            items=[replace(o) for o in rows[start : start + page_size]],
            total=len(rows),
            page=page,
            page_size=page_size,
        )

    def stats(self) -> dict:
        live = [o for o in self._orders.values() if not o.is_deleted]
        paid = [o for o in live if o.payment_status == PaymentStatus.SUCCESSFUL]
        return {
            "total_orders": len(live),
            "by_status": {s.value: sum(1 for o in live if o.status == s) for s in OrderStatus},
            "paid_orders": len(paid),
            "revenue_minor": sum(o.total_minor for o in paid),
        }
