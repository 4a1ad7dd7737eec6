"""Domain models, ports and service for orders.

This module contains the order dataclasses, the closed ``OrderStatus``
state machine with its transition table, protocol definitions (ports) for
the catalog, the inventory ledger and order persistence, and the
``OrderService`` that validates orders and drives status transitions.
"""

import logging
import random
import string
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from apps.common.errors import (
    Conflict,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from apps.common.money import DEFAULT_CURRENCY
from apps.payments.domain import Payment, PaymentStatus

logger = logging.getLogger("orders")

DEFAULT_DELIVERY_FEE_MINOR = 150_000  # 1500.00 NGN
ORDER_NUMBER_ATTEMPTS = 5


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    READY = "READY"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class DeliveryType(str, Enum):
    PICKUP = "PICKUP"
    HOME_DELIVERY = "HOME_DELIVERY"


# Directed edges of the order lifecycle. Every status has an entry.
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.READY, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


def check_transition_table(table) -> None:
    """Raise ``RuntimeError`` unless ``table`` has a row for every status."""
    missing = set(OrderStatus) - set(table)
    if missing:
        names = ", ".join(sorted(s.value for s in missing))
        raise RuntimeError(f"transition table has no row for: {names}")


check_transition_table(TRANSITIONS)

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
OWNER_CANCELLABLE = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True when ``current -> target`` is an edge of the lifecycle."""
    return target in TRANSITIONS[current]


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A single line of an order.

    Attributes:
        book_id: Catalog identifier of the book.
        quantity: Number of copies, at least 1.
        unit_price_minor: Price per copy snapshotted when the order was created.
        title: Book title snapshot for display.

    The dataclass is frozen because items never change after creation.
    """

    book_id: str
    quantity: int
    unit_price_minor: int = 0
    title: str = ""

    @property
    def subtotal_minor(self) -> int:
        return self.unit_price_minor * self.quantity


@dataclass(frozen=True)
class ItemRequest:
    """A requested line before pricing: which book and how many."""

    book_id: str
    quantity: int


@dataclass(frozen=True)
class Book:
    """Catalog view of a book as returned by the catalog port."""

    id: str
    title: str
    price_minor: int
    stock_quantity: int
    is_active: bool = True


@dataclass
class DeliveryDetails:
    address: str = ""
    city: str = ""
    state: str = ""
    recipient_name: str = ""
    recipient_phone: str = ""
    customer_notes: str = ""


@dataclass
class Order:
    """Container for order data.

    Monetary fields are integer minor units (kobo). ``stock_reserved`` is
    set once the inventory ledger has decremented stock for this order and
    cleared again when the stock is restored.
    """

    id: Optional[str]
    owner_id: str
    items: List[OrderItem]
    order_number: str = ""
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    delivery_type: DeliveryType = DeliveryType.PICKUP
    delivery: DeliveryDetails = field(default_factory=DeliveryDetails)
    subtotal_minor: int = 0
    delivery_fee_minor: int = 0
    total_minor: int = 0
    currency: str = DEFAULT_CURRENCY
    stock_reserved: bool = False
    admin_notes: str = ""
    payment_method: str = ""
    payment_ref: str = ""
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCESSFUL


@dataclass(frozen=True)
class OrderPage:
    items: List[Order]
    total: int
    page: int
    page_size: int


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read access to the catalog owned by the inventory service."""

    def get_book(self, book_id: str) -> Optional[Book]:
        """Return the book, or None when it does not exist."""
        raise NotImplementedError()


class InventoryPort(Protocol):
    """Port describing the inventory ledger used by the domain.

    Both operations are keyed by ``order_id`` so a retried call cannot apply
    the same adjustment twice.
    """

    def decrement(self, order_id: str, items: List[OrderItem]) -> None:
        """Atomically remove stock for all items.

        Raises:
            InsufficientStock: When any single item cannot be satisfied. No
                book in the batch is mutated in that case.
        """
        raise NotImplementedError()

    def restore(self, order_id: str, items: List[OrderItem]) -> bool:
        """Give the stock of a previously decremented order back.

        Returns:
            bool: True when stock was restored by this call, False when
            there was nothing to restore (already restored or never taken).
        """
        raise NotImplementedError()


class OrderRepositoryPort(Protocol):
    """Persistence for orders.

    ``atomic()`` delimits a unit of work; ``get_for_update`` must be called
    inside it and keeps the row locked until the block exits.
    """

    def atomic(self) -> AbstractContextManager: ...

    def add(self, order: Order) -> Order:
        """Insert order and items. Raises Conflict on a duplicate order number."""
        ...

    def get(self, order_id: str) -> Optional[Order]: ...

    def get_for_update(self, order_id: str) -> Optional[Order]: ...

    def save(self, order: Order) -> Order: ...

    def list(
        self,
        *,
        owner_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        delivery_type: Optional[DeliveryType] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderPage: ...

    def stats(self) -> dict: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number() -> str:
    """Build a human readable order number: ``ORD-<base36 millis>-<4 chars>``."""
    millis = int(time.time() * 1000)
    digits = string.digits + string.ascii_uppercase
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = digits[rem] + stamp
    suffix = "".join(random.choices(digits, k=4))
    return f"ORD-{stamp}-{suffix}"


# ---- Domain service ----
class OrderService:
    """Domain service for the order lifecycle.

    Validates and prices new orders against the catalog, enforces the
    status transition table and couples transitions to the inventory
    ledger. Persistence goes through ``OrderRepositoryPort`` so the
    service itself does not know about the ORM.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        inventory: InventoryPort,
        orders: OrderRepositoryPort,
        delivery_fee_minor: int = DEFAULT_DELIVERY_FEE_MINOR,
        order_number_factory=generate_order_number,
    ):
        """Initialize the service with required dependencies.

        Args:
            catalog: CatalogPort used to look up books and prices.
            inventory: InventoryPort used to decrement and restore stock.
            orders: Repository persisting orders.
            delivery_fee_minor: Flat fee charged for home delivery.
            order_number_factory: Callable returning a fresh order number.
        """
        self.catalog = catalog
        self.inventory = inventory
        self.orders = orders
        self.delivery_fee_minor = delivery_fee_minor
        self.order_number_factory = order_number_factory

    # -- creation --
    def create_order(
        self,
        owner_id: str,
        items: Iterable[ItemRequest],
        delivery_type: DeliveryType = DeliveryType.PICKUP,
        delivery: Optional[DeliveryDetails] = None,
    ) -> Order:
        """Validate, price and persist a new PENDING order.

        Args:
            owner_id: Identifier of the ordering user.
            items: Requested books and quantities.
            delivery_type: Pickup or home delivery.
            delivery: Optional delivery metadata.

        Returns:
            The persisted Order.

        Raises:
            ValidationError: Empty order or a quantity below 1.
            NotFound: A referenced book is missing or inactive.
            InsufficientStock: Current stock cannot cover a requested quantity.
            Conflict: No unique order number could be generated.
        """
        items = list(items)
        if not items:
            raise ValidationError("Order must contain at least one item")
        for it in items:
            if it.quantity < 1:
                raise ValidationError(f"Quantity for book {it.book_id} must be at least 1")

        requested: dict[str, int] = {}
        for it in items:
            requested[it.book_id] = requested.get(it.book_id, 0) + it.quantity

        books: dict[str, Book] = {}
        for book_id, qty in requested.items():
            book = self.catalog.get_book(book_id)
            if book is None or not book.is_active:
                raise NotFound(f"Book {book_id} is not available", book_id=book_id)
            if book.stock_quantity < qty:
                raise InsufficientStock(
                    book_id,
                    f"Insufficient stock for {book.title}. Available: {book.stock_quantity}",
                )
            books[book_id] = book

        lines = [
            OrderItem(
                book_id=it.book_id,
                quantity=it.quantity,
                unit_price_minor=books[it.book_id].price_minor,
                title=books[it.book_id].title,
            )
            for it in items
        ]
        subtotal = sum(line.subtotal_minor for line in lines)
        fee = self.delivery_fee_minor if delivery_type == DeliveryType.HOME_DELIVERY else 0

        order = Order(
            id=None,
            owner_id=owner_id,
            items=lines,
            delivery_type=delivery_type,
            delivery=delivery or DeliveryDetails(),
            subtotal_minor=subtotal,
            delivery_fee_minor=fee,
            total_minor=subtotal + fee,
        )

        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order.order_number = self.order_number_factory()
            try:
                with self.orders.atomic():
                    saved = self.orders.add(order)
            except Conflict:
                logger.warning(
                    "order number collision, regenerating",
                    extra={"order_number": order.order_number, "attempt": attempt},
                )
                continue
            logger.info(
                "order created",
                extra={"order_id": saved.id, "order_number": saved.order_number, "total_minor": saved.total_minor},
            )
            return saved
        raise Conflict("Could not allocate a unique order number")

    # -- reads --
    def get_order(self, order_id: str, owner_id: Optional[str] = None) -> Order:
        """Return a live order, hiding deleted and (optionally) foreign ones."""
        order = self.orders.get(order_id)
        if order is None or order.is_deleted:
            raise NotFound("Order not found")
        if owner_id is not None and order.owner_id != owner_id:
            raise NotFound("Order not found")
        return order

    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        delivery_type: Optional[DeliveryType] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderPage:
        return self.orders.list(
            status=status, delivery_type=delivery_type, search=search, page=page, page_size=page_size
        )

    def list_owner_orders(self, owner_id: str, page: int = 1, page_size: int = 20) -> OrderPage:
        return self.orders.list(owner_id=owner_id, page=page, page_size=page_size)

    def stats(self) -> dict:
        return self.orders.stats()

    # -- transitions --
    def update_status(
        self, order_id: str, new_status: OrderStatus, notes: Optional[str] = None
    ) -> Order:
        """Move an order along one edge of the transition table.

        Entering PROCESSING decrements stock; entering CANCELLED restores it
        when this order holds a reservation. If the ledger rejects the
        decrement the transition is aborted and nothing is written.

        Raises:
            NotFound: Order missing or soft-deleted.
            InvalidTransition: ``(current, new_status)`` is not an edge.
            InsufficientStock: Stock could not be decremented.
        """
        new_status = OrderStatus(new_status)
        with self.orders.atomic():
            order = self._locked(order_id)
            if not can_transition(order.status, new_status):
                raise InvalidTransition(order.status.value, new_status.value)
            updated = self._apply_transition(order, new_status)
            if notes is not None:
                updated.admin_notes = notes
            saved = self.orders.save(updated)
        logger.info(
            "order status changed",
            extra={"order_id": order_id, "from": order.status.value, "to": new_status.value},
        )
        return saved

    def cancel_order(self, order_id: str, owner_id: str) -> Order:
        """Owner-initiated cancellation.

        Raises:
            NotFound: Order missing, deleted, or owned by someone else.
            InvalidTransition: The order is past the cancellable stages.
            Conflict: The order is already paid and must be refunded instead.
        """
        with self.orders.atomic():
            order = self._locked(order_id)
            if order.owner_id != owner_id:
                raise NotFound("Order not found")
            if order.status not in OWNER_CANCELLABLE:
                raise InvalidTransition(order.status.value, OrderStatus.CANCELLED.value)
            if order.is_paid:
                raise Conflict("Cannot cancel paid order. Please request a refund.")
            saved = self.orders.save(self._apply_transition(order, OrderStatus.CANCELLED))
        logger.info("order cancelled by owner", extra={"order_id": order_id, "from": order.status.value})
        return saved

    def _locked(self, order_id: str) -> Order:
        order = self.orders.get_for_update(order_id)
        if order is None or order.is_deleted:
            raise NotFound("Order not found")
        return order

    def _apply_transition(self, order: Order, new_status: OrderStatus) -> Order:
        """Return a copy of ``order`` moved to ``new_status`` with side effects applied.

        Must run inside ``orders.atomic()`` with the order row locked.
        """
        updated = replace(order, status=new_status)
        if new_status == OrderStatus.PROCESSING and not order.stock_reserved:
            self.inventory.decrement(order.id, order.items)
            updated.stock_reserved = True
        elif new_status == OrderStatus.CANCELLED:
            if order.stock_reserved:
                self.inventory.restore(order.id, order.items)
                updated.stock_reserved = False
            updated.cancelled_at = _now()
        elif new_status == OrderStatus.COMPLETED:
            updated.completed_at = _now()
        return updated

    # -- payments --
    def record_payment(
        self,
        order_id: str,
        payment_method: str,
        payment_ref: str,
        paid_at: Optional[datetime] = None,
    ) -> Order:
        """Mark an order as paid (staff "process payment").

        Raises:
            NotFound: Order missing or deleted.
            Conflict: The order is already paid.
        """
        with self.orders.atomic():
            order = self._locked(order_id)
            if order.is_paid:
                raise Conflict("Order is already paid")
            order.payment_status = PaymentStatus.SUCCESSFUL
            order.payment_method = payment_method
            order.payment_ref = payment_ref
            order.paid_at = paid_at or _now()
            saved = self.orders.save(order)
        logger.info("order marked paid", extra={"order_id": order_id, "payment_ref": payment_ref})
        return saved

    def apply_settled_payment(self, payment: Payment) -> None:
        """Fulfillment hook for a payment that just became SUCCESSFUL.

        Runs inside the payment settlement transaction. Redelivery for the
        same reference is a no-op; an order already settled by another
        payment, or one that no longer exists, is left untouched.
        """
        if not payment.reference_id:
            logger.warning("settled payment has no order reference", extra={"payment_ref": payment.payment_ref})
            return
        order = self.orders.get_for_update(payment.reference_id)
        if order is None or order.is_deleted:
            logger.warning(
                "settled payment references unknown order",
                extra={"payment_ref": payment.payment_ref, "order_id": payment.reference_id},
            )
            return
        if order.is_paid:
            if order.payment_ref != payment.payment_ref:
                logger.warning(
                    "order already paid by another payment",
                    extra={"order_id": order.id, "payment_ref": payment.payment_ref, "existing_ref": order.payment_ref},
                )
            return
        if payment.amount_minor < order.total_minor:
            logger.warning(
                "settled payment does not cover order total",
                extra={"order_id": order.id, "payment_ref": payment.payment_ref, "amount_minor": payment.amount_minor},
            )
            return
        order.payment_status = PaymentStatus.SUCCESSFUL
        order.payment_method = payment.method.value
        order.payment_ref = payment.payment_ref
        order.paid_at = payment.paid_at or _now()
        self.orders.save(order)
        logger.info("order paid via gateway", extra={"order_id": order.id, "payment_ref": payment.payment_ref})

    # -- deletion --
    def delete_order(self, order_id: str) -> None:
        """Soft-delete an order that reached a terminal, unpaid state.

        Raises:
            NotFound: Order missing or already deleted.
            Conflict: The order is paid or still in progress.
        """
        with self.orders.atomic():
            order = self._locked(order_id)
            if order.is_paid:
                raise Conflict("Cannot delete paid order")
            if order.status not in TERMINAL_STATUSES:
                raise Conflict(f"Cannot delete order in status {order.status.value}")
            order.deleted_at = _now()
            self.orders.save(order)
        logger.info("order deleted", extra={"order_id": order_id})
