"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
map to domain calls on the ``OrderService`` returned by
``get_order_service()`` and serialize the result with ``OrderReadDTO``.
Domain errors propagate to ``api_exception_handler``, which renders them as
``{"detail": CODE, ...}`` with the matching HTTP status.

Idempotency: when an ``Idempotency-Key`` header is sent to the create
endpoint, the first request is processed and its response stored; retries
with the same payload replay the stored response, and reusing the key with
a different payload returns 409.
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.common.errors import DomainError, ValidationError, parse_dto
from gateway.identity import STAFF_ROLES, HasRole, Role

from .domain import DeliveryDetails, DeliveryType, ItemRequest, OrderStatus
from .idempotency import finalize, get_or_create_idempotent
from .providers import get_order_service
from .schemas import CreateOrderDTO, OrderReadDTO, ProcessPaymentDTO, UpdateStatusDTO

MAX_PAGE_SIZE = 100


def _page_params(request) -> tuple[int, int]:
    try:
        page = int(request.query_params.get("page", 1))
        page_size = int(request.query_params.get("page_size", 20))
    except ValueError:
        raise ValidationError("page and page_size must be integers")
    if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}")
    return page, page_size


def _page_body(page) -> dict:
    return {
        "count": page.total,
        "page": page.page,
        "page_size": page.page_size,
        "results": [OrderReadDTO.from_domain(o).to_json() for o in page.items],
    }


class OrdersCollectionView(APIView):
    """Create an order (any user) or list every order (staff)."""

    permission_classes = [HasRole]
    allowed_roles = {"GET": (*STAFF_ROLES, Role.PASTOR)}
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        page, page_size = _page_params(request)
        params = request.query_params
        try:
            order_status = OrderStatus(params["status"]) if params.get("status") else None
            delivery_type = DeliveryType(params["delivery_type"]) if params.get("delivery_type") else None
        except ValueError:
            raise ValidationError("Unknown status or delivery_type filter")
        result = get_order_service().list_orders(
            status=order_status,
            delivery_type=delivery_type,
            search=params.get("search") or None,
            page=page,
            page_size=page_size,
        )
        return Response(_page_body(result))

    def post(self, request):
        """Create a new PENDING order for the caller.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created.
            - replay of the stored response (``Idempotent-Replay: true``) when
              the same idempotency key and payload are retried.
            - 409 ``CONFLICT`` when the key is reused with a different payload.
            - 400 ``VALIDATION_ERROR``, 404 ``NOT_FOUND`` (unknown book) and
              422 ``INSUFFICIENT_STOCK`` from validation and the domain.
            - 503 ``UPSTREAM_UNAVAILABLE`` when inventory is down; not stored
              against the idempotency key, so a retry is processed again.
        """
        owner_id = request.user.id
        idem_key = request.headers.get("Idempotency-Key")

        rec = None
        if idem_key:
            existing, rec = get_or_create_idempotent(owner_id, idem_key, request.data)
            if existing and rec.response_status:
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            dto = parse_dto(CreateOrderDTO, request.data)
            order = get_order_service().create_order(
                owner_id=owner_id,
                items=[ItemRequest(book_id=i.book_id, quantity=i.quantity) for i in dto.items],
                delivery_type=dto.delivery_type,
                delivery=DeliveryDetails(
                    address=dto.delivery_address,
                    city=dto.delivery_city,
                    state=dto.delivery_state,
                    recipient_name=dto.recipient_name,
                    recipient_phone=dto.recipient_phone,
                    customer_notes=dto.customer_notes,
                ),
            )
        except DomainError as e:
            # 5xx stays unfinalized so a retry with the same key runs again
            if rec and e.http_status < 500:
                finalize(rec, e.http_status, e.to_response())
            raise

        body = OrderReadDTO.from_domain(order).to_json()
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class MyOrdersView(APIView):
    permission_classes = [HasRole]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        page, page_size = _page_params(request)
        result = get_order_service().list_owner_orders(request.user.id, page=page, page_size=page_size)
        return Response(_page_body(result))


class OrderStatsView(APIView):
    permission_classes = [HasRole]
    allowed_roles = {"GET": STAFF_ROLES}

    def get(self, request):
        return Response(get_order_service().stats())


class OrderDetailView(APIView):
    """Read an order (owner or staff) and soft-delete it (admins)."""

    permission_classes = [HasRole]
    allowed_roles = {"DELETE": STAFF_ROLES}
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        user = request.user
        owner_id = None if user.has_role(*STAFF_ROLES, Role.PASTOR) else user.id
        order = get_order_service().get_order(str(oid), owner_id=owner_id)
        return Response(OrderReadDTO.from_domain(order).to_json())

    def delete(self, request, oid):
        get_order_service().delete_order(str(oid))
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrderStatusView(APIView):
    permission_classes = [HasRole]
    allowed_roles = {"PATCH": (*STAFF_ROLES, Role.WORKER)}

    def patch(self, request, oid):
        dto = parse_dto(UpdateStatusDTO, request.data)
        order = get_order_service().update_status(str(oid), dto.status, notes=dto.notes)
        return Response(OrderReadDTO.from_domain(order).to_json())


class ProcessPaymentView(APIView):
    """Staff records a payment collected outside the gateway (cash, transfer)."""

    permission_classes = [HasRole]
    allowed_roles = {"POST": STAFF_ROLES}

    def post(self, request, oid):
        dto = parse_dto(ProcessPaymentDTO, request.data)
        order = get_order_service().record_payment(str(oid), dto.payment_method, dto.payment_ref)
        return Response(OrderReadDTO.from_domain(order).to_json())


class CancelOrderView(APIView):
    permission_classes = [HasRole]

    def patch(self, request, oid):
        order = get_order_service().cancel_order(str(oid), owner_id=request.user.id)
        return Response(OrderReadDTO.from_domain(order).to_json())
