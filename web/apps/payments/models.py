import uuid

from django.db import models


class PaymentModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner_id = models.CharField(max_length=64, db_index=True)
    payment_ref = models.CharField(max_length=64, unique=True)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        SUCCESSFUL = "SUCCESSFUL"
        FAILED = "FAILED"

    class Method(models.TextChoices):
        PAYSTACK = "PAYSTACK"
        BANK_TRANSFER = "BANK_TRANSFER"
        CASH = "CASH"

    # Money in minor units (kobo)
    amount_minor = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="NGN")
    method = models.CharField(max_length=20, choices=Method.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    # What the payment is for, e.g. "book_order" with the order id as reference
    purpose = models.CharField(max_length=500)
    reference_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount_minor__gt=0), name="payments_amount_positive"),
        ]
