"""Idempotency utilities for safely handling duplicate create requests.

Client-supplied ``Idempotency-Key`` values are scoped to the caller: the
stored key is ``<owner_id>:<key>`` so two users can never replay each
other's responses. A stored record is either in flight (``response_status``
0) or finalized with the response that later retries get back.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from apps.common.errors import Conflict

from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def scoped_key(owner_id: str, key: str) -> str:
    return f"{owner_id}:{key}"


@transaction.atomic
def get_or_create_idempotent(owner_id: str, key: str, payload: dict):
    """Get-or-create an idempotency record for the caller's key and payload.

    Behavior:
        - New key: create a record and return ``(False, rec)``; the caller
          processes the request and calls ``finalize``.
        - Same key, same payload: lock and return ``(True, rec)`` for replay.
        - Same key, different payload: raise ``Conflict``.

    The create path runs in a nested savepoint so an ``IntegrityError`` only
    rolls back that block; the existing-record path takes a row lock.

    Args:
        owner_id: Caller the key belongs to.
        key: Client-provided idempotency key.
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.

    Raises:
        Conflict: The key was already used with a different payload.
    """
    h = _hash(payload)
    full_key = scoped_key(owner_id, key)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=full_key, owner_id=owner_id, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=full_key)
        if rec.request_hash != h:
            raise Conflict("Idempotency key reused with a different payload", reason="IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response so retries can short-circuit.

    Args:
        rec: The idempotency record to update.
        status_code: HTTP status code to store for the response.
        body: JSON-serializable response body to persist.
        order_id: Optional id of the order created by the request.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
