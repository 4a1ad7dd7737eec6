"""SQLAlchemy repository for the book catalog and the stock ledger.

The ``books`` table is the source of truth for price and stock. Stock only
moves through ``InventoryRepo.decrement`` and ``InventoryRepo.restore``,
which adjust a whole order's items in one transaction and record a
``stock_movements`` row per ``(order_id, kind)``. The unique constraint on
that pair makes both operations idempotent: a retried call for the same
order is reported as not applied instead of moving stock twice.

The connection is configured by ``DATABASE_URL`` or, when unset, by the
``DB_*`` variables of the PostgreSQL deployment.
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)

DECREMENT = "DECREMENT"
RESTORE = "RESTORE"


class Base(DeclarativeBase):
    pass


class Book(Base):
    """Catalog entry with its current stock.

    Attributes:
        id: Book identifier shared with the web tier.
        title: Display title, snapshotted into order items.
        price_minor: Unit price in kobo.
        stock_quantity: Copies on hand; never negative.
        is_active: Inactive books cannot be ordered or decremented.
    """

    __tablename__ = "books"
    __table_args__ = (CheckConstraint("stock_quantity >= 0", name="books_stock_non_negative"),)

    id = mapped_column(String(64), primary_key=True)
    title = mapped_column(String(255), nullable=False, default="")
    price_minor = mapped_column(BigInteger, nullable=False, default=0)
    stock_quantity = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)


class StockMovement(Base):
    """Marker that an order's batch adjustment of a given kind was applied."""

    __tablename__ = "stock_movements"
    __table_args__ = (UniqueConstraint("order_id", "kind", name="stock_movements_order_kind"),)

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id = mapped_column(String(64), nullable=False, index=True)
    kind = mapped_column(String(16), nullable=False)
    created_at = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class InsufficientStock(Exception):
    """A batch decrement was rejected; no book in the batch changed."""

    def __init__(self, book_id: str):
        super().__init__("INSUFFICIENT_STOCK")
        self.book_id = book_id


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Context manager that yields a SQLAlchemy session, closed on exit."""
    with Session(engine) as s:
        yield s


def merge_items(items: list[tuple[str, int]]) -> dict[str, int]:
    """Sum quantities of repeated book ids."""
    merged: dict[str, int] = {}
    for book_id, qty in items:
        merged[book_id] = merged.get(book_id, 0) + qty
    return merged


def _has_movement(s: Session, order_id: str, kind: str) -> bool:
    stmt = select(StockMovement.id).where(StockMovement.order_id == order_id, StockMovement.kind == kind)
    return s.scalar(stmt) is not None


class InventoryRepo:
    """Catalog reads and the all-or-nothing stock ledger."""

    def get_book(self, book_id: str) -> Book | None:
        with get_session() as s:
            book = s.get(Book, book_id)
            if book is not None:
                s.expunge(book)
            return book

    def upsert(
        self,
        book_id: str,
        title: str,
        price_minor: int,
        stock_quantity: int,
        is_active: bool = True,
    ) -> None:
        """Create or overwrite a catalog entry (seeding and admin tooling)."""
        with get_session() as s, s.begin():
            s.merge(
                Book(
                    id=book_id,
                    title=title,
                    price_minor=price_minor,
                    stock_quantity=stock_quantity,
                    is_active=is_active,
                )
            )

    def decrement(self, order_id: str, items: list[tuple[str, int]]) -> bool:
        """Remove stock for every item of an order in one transaction.

        Each book is decremented with a conditional
        ``UPDATE ... WHERE stock_quantity >= :q AND is_active``, in sorted id
        order so concurrent batches lock rows in the same sequence. A zero
        rowcount aborts and rolls back the whole batch.

        Args:
            order_id: Order the adjustment belongs to.
            items: ``(book_id, quantity)`` pairs; repeated ids are summed.

        Returns:
            bool: True when stock was decremented by this call, False when
            the order had already been decremented.

        Raises:
            InsufficientStock: A book is missing, inactive or short of stock.
        """
        wanted = merge_items(items)
        try:
            with get_session() as s, s.begin():
                if _has_movement(s, order_id, DECREMENT):
                    return False
                for book_id in sorted(wanted):
                    qty = wanted[book_id]
                    result = s.execute(
                        update(Book)
                        .where(
                            Book.id == book_id,
                            Book.stock_quantity >= qty,
                            Book.is_active.is_(True),
                        )
                        .values(stock_quantity=Book.stock_quantity - qty)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise InsufficientStock(book_id)
                s.add(StockMovement(order_id=order_id, kind=DECREMENT))
                s.flush()
        except IntegrityError:
            # A concurrent call for the same order committed first
            return False
        return True

    def restore(self, order_id: str, items: list[tuple[str, int]]) -> bool:
        """Give back the stock of a decremented order, at most once.

        Returns:
            bool: True when stock was restored by this call; False when the
            order was never decremented or was already restored.
        """
        wanted = merge_items(items)
        try:
            with get_session() as s, s.begin():
                if not _has_movement(s, order_id, DECREMENT) or _has_movement(s, order_id, RESTORE):
                    return False
                s.add(StockMovement(order_id=order_id, kind=RESTORE))
                s.flush()
                for book_id in sorted(wanted):
                    s.execute(
                        update(Book)
                        .where(Book.id == book_id)
                        .values(stock_quantity=Book.stock_quantity + wanted[book_id])
                        .execution_options(synchronize_session=False)
                    )
        except IntegrityError:
            return False
        return True
