"""Repository layer for persisting orders.

Maps ``Order`` domain objects to ``OrderModel``/``OrderItemModel`` rows so
the domain service stays decoupled from Django ORM details. Units of work
use ``transaction.atomic`` and ``get_for_update`` takes a row-level lock
(``SELECT ... FOR UPDATE``) held until the surrounding block exits.
"""

from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum

from apps.common.errors import Conflict
from apps.payments.domain import PaymentStatus

from .domain import DeliveryDetails, DeliveryType, Order, OrderItem, OrderPage, OrderStatus
from .models import OrderItemModel, OrderModel


def to_domain(obj: OrderModel) -> Order:
    return Order(
        id=str(obj.id),
        owner_id=obj.owner_id,
        order_number=obj.order_number,
        items=[
            OrderItem(
                book_id=it.book_id,
                quantity=it.quantity,
                unit_price_minor=it.unit_price_minor,
                title=it.title,
            )
            for it in obj.items.all()
        ],
        status=OrderStatus(obj.status),
        payment_status=PaymentStatus(obj.payment_status),
        delivery_type=DeliveryType(obj.delivery_type),
        delivery=DeliveryDetails(
            address=obj.delivery_address,
            city=obj.delivery_city,
            state=obj.delivery_state,
            recipient_name=obj.recipient_name,
            recipient_phone=obj.recipient_phone,
            customer_notes=obj.customer_notes,
        ),
        subtotal_minor=obj.subtotal_minor,
        delivery_fee_minor=obj.delivery_fee_minor,
        total_minor=obj.total_minor,
        currency=obj.currency,
        stock_reserved=obj.stock_reserved,
        admin_notes=obj.admin_notes,
        payment_method=obj.payment_method,
        payment_ref=obj.payment_ref,
        created_at=obj.created_at,
        paid_at=obj.paid_at,
        completed_at=obj.completed_at,
        cancelled_at=obj.cancelled_at,
        deleted_at=obj.deleted_at,
    )


# Columns written by save(); items, totals and the owner are immutable.
_MUTABLE_FIELDS = (
    "status",
    "payment_status",
    "payment_method",
    "payment_ref",
    "stock_reserved",
    "admin_notes",
    "paid_at",
    "completed_at",
    "cancelled_at",
    "deleted_at",
)


class OrderRepository:
    """Persists Order domain objects using Django ORM."""

    def atomic(self):
        return transaction.atomic()

    def add(self, order: Order) -> Order:
        """Insert the order and its items in one transaction.

        Raises:
            Conflict: When the order number is already taken.
        """
        try:
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    order_number=order.order_number,
                    owner_id=order.owner_id,
                    status=order.status.value,
                    payment_status=order.payment_status.value,
                    subtotal_minor=order.subtotal_minor,
                    delivery_fee_minor=order.delivery_fee_minor,
                    total_minor=order.total_minor,
                    currency=order.currency,
                    delivery_type=order.delivery_type.value,
                    delivery_address=order.delivery.address,
                    delivery_city=order.delivery.city,
                    delivery_state=order.delivery.state,
                    recipient_name=order.delivery.recipient_name,
                    recipient_phone=order.delivery.recipient_phone,
                    customer_notes=order.delivery.customer_notes,
                )
                OrderItemModel.objects.bulk_create(
                    [
                        OrderItemModel(
                            order=obj,
                            book_id=it.book_id,
                            title=it.title,
                            quantity=it.quantity,
                            unit_price_minor=it.unit_price_minor,
                            subtotal_minor=it.subtotal_minor,
                        )
                        for it in order.items
                    ]
                )
        except IntegrityError as e:
            if OrderModel.objects.filter(order_number=order.order_number).exists():
                raise Conflict("Duplicate order number", order_number=order.order_number) from e
            raise
        return to_domain(obj)

    def get(self, order_id: str) -> Order | None:
        obj = OrderModel.objects.prefetch_related("items").filter(id=order_id).first()
        return to_domain(obj) if obj else None

    def get_for_update(self, order_id: str) -> Order | None:
        obj = OrderModel.objects.select_for_update().filter(id=order_id).first()
        return to_domain(obj) if obj else None

    def save(self, order: Order) -> Order:
        values = {
            "status": order.status.value,
            "payment_status": order.payment_status.value,
            "payment_method": order.payment_method,
            "payment_ref": order.payment_ref,
            "stock_reserved": order.stock_reserved,
            "admin_notes": order.admin_notes,
            "paid_at": order.paid_at,
            "completed_at": order.completed_at,
            "cancelled_at": order.cancelled_at,
            "deleted_at": order.deleted_at,
        }
        obj = OrderModel.objects.get(id=order.id)
        for name in _MUTABLE_FIELDS:
            setattr(obj, name, values[name])
        obj.save(update_fields=[*_MUTABLE_FIELDS, "updated_at"])
        return to_domain(obj)

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
        qs = OrderModel.objects.filter(deleted_at__isnull=True)
        if owner_id is not None:
            qs = qs.filter(owner_id=owner_id)
        if status is not None:
            qs = qs.filter(status=OrderStatus(status).value)
        if delivery_type is not None:
            qs = qs.filter(delivery_type=DeliveryType(delivery_type).value)
        if search:
            qs = qs.filter(Q(order_number__icontains=search) | Q(recipient_name__icontains=search))
        total = qs.count()
        start = (page - 1) * page_size
        rows = qs.order_by("-created_at").prefetch_related("items")[start : start + page_size]
        return OrderPage(items=[to_domain(o) for o in rows], total=total, page=page, page_size=page_size)

    def stats(self) -> dict:
        live = OrderModel.objects.filter(deleted_at__isnull=True)
        per_status = {
            row["status"]: row["n"] for row in live.values("status").annotate(n=Count("id"))
        }
        paid = live.filter(payment_status=PaymentStatus.SUCCESSFUL.value)
        return {
            "total_orders": live.count(),
            "by_status": {s.value: per_status.get(s.value, 0) for s in OrderStatus},
            "paid_orders": paid.count(),
            "revenue_minor": paid.aggregate(total=Sum("total_minor"))["total"] or 0,
        }
