"""HTTP views for the payments app.

The webhook endpoint is public: the provider authenticates itself with the
``X-Paystack-Signature`` header, which is checked against the raw request
body before the JSON is parsed. Every other endpoint requires a caller
identity forwarded by the gateway.
"""

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.common.errors import ValidationError, parse_dto
from gateway.identity import STAFF_ROLES, HasRole

from .providers import get_payment_service
from .schemas import InitiatePaymentDTO, PaymentReadDTO, VerifyPaymentDTO

MAX_PAGE_SIZE = 100


class InitiatePaymentView(APIView):
    permission_classes = [HasRole]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        dto = parse_dto(InitiatePaymentDTO, request.data)
        email = request.user.email or dto.email
        if not email:
            raise ValidationError("A payer email is required")
        initiated = get_payment_service().initiate_payment(
            owner_id=request.user.id,
            email=email,
            amount=dto.amount,
            method=dto.payment_method,
            purpose=dto.purpose,
            reference_id=dto.reference_id,
            metadata=dto.metadata,
        )
        return Response(
            {
                "payment": PaymentReadDTO.from_domain(initiated.payment).to_json(),
                "authorization_url": initiated.authorization_url,
                "access_code": initiated.access_code,
                "reference": initiated.reference,
            },
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(APIView):
    permission_classes = [HasRole]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        dto = parse_dto(VerifyPaymentDTO, request.data)
        verified = get_payment_service().verify_payment(dto.payment_ref)
        v = verified.verification
        return Response(
            {
                "payment": PaymentReadDTO.from_domain(verified.payment).to_json(),
                "verification": {
                    "success": v.success,
                    "status": v.provider_status,
                    "amount": str(v.amount) if v.amount is not None else None,
                    "currency": v.currency,
                    "reference": v.reference,
                    "paid_at": v.paid_at.isoformat() if v.paid_at else None,
                    "customer": v.customer,
                },
            }
        )


class PaystackWebhookView(APIView):
    """Receives Paystack events; acknowledges with 200 once applied."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        # Signature covers the exact bytes; read them before DRF parses anything
        raw_body = request.body
        signature = request.META.get("HTTP_X_PAYSTACK_SIGNATURE")
        return Response(get_payment_service().handle_webhook(raw_body, signature))


class MyPaymentsView(APIView):
    permission_classes = [HasRole]

    def get(self, request):
        try:
            page = int(request.query_params.get("page", 1))
            page_size = int(request.query_params.get("page_size", 20))
        except ValueError:
            raise ValidationError("page and page_size must be integers")
        if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}")
        result = get_payment_service().list_owner_payments(request.user.id, page=page, page_size=page_size)
        return Response(
            {
                "count": result.total,
                "page": result.page,
                "page_size": result.page_size,
                "results": [PaymentReadDTO.from_domain(p).to_json() for p in result.items],
            }
        )


class PaymentStatsView(APIView):
    permission_classes = [HasRole]
    allowed_roles = {"GET": STAFF_ROLES}

    def get(self, request):
        return Response(get_payment_service().stats())
