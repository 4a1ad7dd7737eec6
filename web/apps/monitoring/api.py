from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.payments.providers import paystack_config


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    # Missing Paystack credentials degrade payments but not liveness
    gateway_ok = paystack_config().is_configured

    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {"db": {"ok": db_ok}, "paystack": {"configured": gateway_ok}},
        },
        status=code,
    )
