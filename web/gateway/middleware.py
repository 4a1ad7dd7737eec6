"""Middleware that assigns request identifiers and guards payload size.

``RequestIdMiddleware`` ensures every incoming HTTP request carries a
request identifier (UUID), reused from the ``X-Request-Id`` header when the
client or the upstream gateway supplied one. The id and the caller's user
id (forwarded by the identity gateway as ``X-User-Id``) are stored on the
request and in context variables so logging filters and outbound HTTP
clients can read them without passing them around.

``ApiSizeLimitMiddleware`` rejects oversized bodies on the API and webhook
routes before they reach a view.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
USER_ID_CTX = contextvars.ContextVar("user_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Sets and returns a per-request identifier.

    Attributes:
        HEADER (str): Incoming request-id header in ``request.META`` casing.
        USER_HEADER (str): Incoming user-id header set by the identity gateway.
        RESPONSE_HEADER (str): Header echoed on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    USER_HEADER = "HTTP_X_USER_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._ctx_tokens = (
            REQUEST_ID_CTX.set(rid),
            USER_ID_CTX.set(request.META.get(self.USER_HEADER) or "-"),
        )

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        tokens = getattr(request, "_ctx_tokens", None)
        if tokens:
            REQUEST_ID_CTX.reset(tokens[0])
            USER_ID_CTX.reset(tokens[1])
            request._ctx_tokens = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Return 413 for API bodies larger than ``API_MAX_BYTES``."""

    GUARDED_PREFIXES = ("/api/",)

    def process_request(self, request):
        if not request.path.startswith(self.GUARDED_PREFIXES):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
            return JsonResponse(
                {"detail": "PAYLOAD_TOO_LARGE", "message": f"Body exceeds {MAX_API_BYTES} bytes"},
                status=413,
            )
        return None
