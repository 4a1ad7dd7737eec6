"""Logging filter that enriches records with the current request context.

Adding ``RequestContextFilter`` to a handler lets formatters reference
``%(request_id)s`` and ``%(user_id)s`` for per-request correlation without
touching individual log statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX, USER_ID_CTX


class RequestContextFilter(Filter):
    """Attach ``request_id`` and ``user_id`` attributes to log records.

    Values come from the ContextVars populated by ``RequestIdMiddleware``;
    outside a request both default to a hyphen so formats always resolve.
    Explicit values passed through ``extra=`` are left untouched.
    """

    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        if not hasattr(record, "user_id"):
            record.user_id = USER_ID_CTX.get()
        return True
