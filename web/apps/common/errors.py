"""Domain error taxonomy shared by the orders and payments apps.

Every error raised by the domain services derives from ``DomainError``,
which is itself a ``ValueError`` whose string value is a short error code
(for example ``"INSUFFICIENT_STOCK"``). Views and tests can therefore keep
matching on ``str(exc)`` while the HTTP layer maps each class to a status
code through ``api_exception_handler``.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger("errors")


class DomainError(ValueError):
    """Base class for all business errors.

    Attributes:
        code: Short, stable error code returned to clients.
        http_status: HTTP status the API layer responds with.
        message: Human readable explanation.
        extra: Additional JSON-serializable fields for the response body.
    """

    code = "DOMAIN_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str | None = None, **extra: Any):
        super().__init__(self.code)
        self.message = message or self.code
        self.extra = extra

    def to_response(self) -> dict:
        """Render the error as the API response body."""
        body = {"detail": self.code, "message": self.message}
        body.update(self.extra)
        return body


class ValidationError(DomainError):
    """Malformed or out-of-range input, rejected before persistence."""
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST


class NotFound(DomainError):
    """Missing or not-owned entity. No state was changed."""
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class Conflict(DomainError):
    """The request clashes with the current state (e.g. cancel after paid)."""
    code = "CONFLICT"
    http_status = status.HTTP_409_CONFLICT


class InvalidTransition(DomainError):
    """Illegal order status edge; the stored status is unchanged."""
    code = "INVALID_TRANSITION"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition from {current} to {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class InsufficientStock(DomainError):
    """A stock decrement would underflow; the whole batch was aborted."""
    code = "INSUFFICIENT_STOCK"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, book_id: str, message: str | None = None):
        super().__init__(message or f"Insufficient stock for book {book_id}", book_id=book_id)
        self.book_id = book_id


class UnsupportedMethod(DomainError):
    code = "UNSUPPORTED_METHOD"
    http_status = status.HTTP_400_BAD_REQUEST


class GatewayError(DomainError):
    """Payment provider unreachable or returned a non-success response.

    Callers may retry: payment references guard against duplicates.
    """
    code = "GATEWAY_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY


class SignatureError(DomainError):
    """Webhook signature mismatch. The request is rejected without mutation."""
    code = "INVALID_SIGNATURE"
    http_status = status.HTTP_400_BAD_REQUEST


class UpstreamUnavailable(DomainError):
    """An internal dependency (inventory service) could not be reached."""
    code = "UPSTREAM_UNAVAILABLE"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


def api_exception_handler(exc, context):
    """DRF exception handler that renders ``DomainError`` instances.

    Falls back to DRF's default handler for everything else (authentication,
    throttling, parse errors), so unexpected exceptions still propagate.
    """
    if isinstance(exc, DomainError):
        view = context.get("view")
        logger.info(
            "domain error",
            extra={"error_code": exc.code, "view": type(view).__name__ if view else None},
        )
        return Response(exc.to_response(), status=exc.http_status)
    return exception_handler(exc, context)


def parse_dto(dto_cls, data):
    """Validate ``data`` with a pydantic model, raising ``ValidationError`` on failure."""
    try:
        return dto_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors())
        ) from e
