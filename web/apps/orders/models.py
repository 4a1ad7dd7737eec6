import uuid
from django.db import models


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=40, unique=True)
    owner_id = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        CONFIRMED = "CONFIRMED"
        PROCESSING = "PROCESSING"
        SHIPPED = "SHIPPED"
        READY = "READY"
        DELIVERED = "DELIVERED"
        COMPLETED = "COMPLETED"
        CANCELLED = "CANCELLED"
        REFUNDED = "REFUNDED"

    class PaymentStatus(models.TextChoices):
        PENDING = "PENDING"
        SUCCESSFUL = "SUCCESSFUL"
        FAILED = "FAILED"

    class DeliveryType(models.TextChoices):
        PICKUP = "PICKUP"
        HOME_DELIVERY = "HOME_DELIVERY"

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=32, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(max_length=32, blank=True, default="")
    payment_ref = models.CharField(max_length=64, blank=True, default="")

    # Money in minor units (kobo)
    subtotal_minor = models.BigIntegerField(default=0)
    delivery_fee_minor = models.BigIntegerField(default=0)
    total_minor = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="NGN")

    delivery_type = models.CharField(
        max_length=20, choices=DeliveryType.choices, default=DeliveryType.PICKUP
    )
    delivery_address = models.CharField(max_length=500, blank=True, default="")
    delivery_city = models.CharField(max_length=100, blank=True, default="")
    delivery_state = models.CharField(max_length=100, blank=True, default="")
    recipient_name = models.CharField(max_length=100, blank=True, default="")
    recipient_phone = models.CharField(max_length=20, blank=True, default="")
    customer_notes = models.CharField(max_length=500, blank=True, default="")
    admin_notes = models.TextField(blank=True, default="")

    # Set while the inventory ledger holds stock for this order
    stock_reserved = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_minor=models.F("subtotal_minor") + models.F("delivery_fee_minor")),
                name="orders_total_is_subtotal_plus_fee",
            ),
        ]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.CASCADE)
    book_id = models.CharField(max_length=64)
    title = models.CharField(max_length=255, blank=True, default="")
    quantity = models.PositiveIntegerField()
    unit_price_minor = models.BigIntegerField()
    subtotal_minor = models.BigIntegerField()

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    """Stored response for a client-supplied ``Idempotency-Key``."""

    key = models.CharField(max_length=200, primary_key=True)
    owner_id = models.CharField(max_length=64)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_idempotency_keys"
