"""Django ORM persistence for payments."""

from django.db import transaction
from django.db.models import Sum

from apps.common.money import to_major

from .domain import Payment, PaymentMethod, PaymentPage, PaymentStatus
from .models import PaymentModel

RECENT_PAID_LIMIT = 10


def to_domain(obj: PaymentModel) -> Payment:
    return Payment(
        id=str(obj.id),
        owner_id=obj.owner_id,
        amount_minor=obj.amount_minor,
        method=PaymentMethod(obj.method),
        payment_ref=obj.payment_ref,
        purpose=obj.purpose,
        reference_id=obj.reference_id,
        metadata=obj.metadata or {},
        currency=obj.currency,
        status=PaymentStatus(obj.status),
        paid_at=obj.paid_at,
        created_at=obj.created_at,
    )


class PaymentRepository:
    """Persists Payment domain objects; ``get_for_update`` locks the row."""

    def atomic(self):
        return transaction.atomic()

    def add(self, payment: Payment) -> Payment:
        obj = PaymentModel.objects.create(
            owner_id=payment.owner_id,
            payment_ref=payment.payment_ref,
            amount_minor=payment.amount_minor,
            currency=payment.currency,
            method=payment.method.value,
            status=payment.status.value,
            purpose=payment.purpose,
            reference_id=payment.reference_id,
            metadata=payment.metadata,
        )
        return to_domain(obj)

    def get_by_ref(self, payment_ref: str) -> Payment | None:
        obj = PaymentModel.objects.filter(payment_ref=payment_ref).first()
        return to_domain(obj) if obj else None

    def get_for_update(self, payment_ref: str) -> Payment | None:
        obj = PaymentModel.objects.select_for_update().filter(payment_ref=payment_ref).first()
        return to_domain(obj) if obj else None

    def save(self, payment: Payment) -> Payment:
        obj = PaymentModel.objects.get(payment_ref=payment.payment_ref)
        obj.status = payment.status.value
        obj.paid_at = payment.paid_at
        obj.metadata = payment.metadata
        obj.save(update_fields=["status", "paid_at", "metadata", "updated_at"])
        return to_domain(obj)

    def list_by_owner(self, owner_id: str, page: int = 1, page_size: int = 20) -> PaymentPage:
        qs = PaymentModel.objects.filter(owner_id=owner_id).order_by("-created_at")
        start = (page - 1) * page_size
        return PaymentPage(
            items=[to_domain(p) for p in qs[start : start + page_size]],
            total=qs.count(),
            page=page,
            page_size=page_size,
        )

    def stats(self) -> dict:
        successful = PaymentModel.objects.filter(status=PaymentStatus.SUCCESSFUL.value)
        revenue_minor = successful.aggregate(total=Sum("amount_minor"))["total"] or 0
        recent = successful.order_by("-paid_at")[:RECENT_PAID_LIMIT]
        return {
            "total_payments": PaymentModel.objects.count(),
            "successful_payments": successful.count(),
            "revenue_minor": revenue_minor,
            "revenue": str(to_major(revenue_minor)),
            "recent": [
                {
                    "payment_ref": p.payment_ref,
                    "owner_id": p.owner_id,
                    "amount": str(to_major(p.amount_minor)),
                    "purpose": p.purpose,
                    "paid_at": p.paid_at.isoformat() if p.paid_at else None,
                }
                for p in recent
            ],
        }
