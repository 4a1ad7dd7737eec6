"""API tests for reading orders and driving them through their lifecycle."""

from uuid import uuid4

import pytest

CREATE_URL = "/api/orders/"
DETAIL_URL = "/api/orders/{oid}/"
STATUS_URL = "/api/orders/{oid}/status/"
CANCEL_URL = "/api/orders/{oid}/cancel/"
PAY_URL = "/api/orders/{oid}/process-payment/"


def _create(client, headers, book_id="bk-1", quantity=2):
    r = client.post(
        CREATE_URL,
        data={"items": [{"book_id": book_id, "quantity": quantity}]},
        content_type="application/json",
        **headers,
    )
    assert r.status_code == 201, r.json()
    return r.json()


def _move(client, headers, oid, status, **extra):
    return client.patch(
        STATUS_URL.format(oid=oid),
        data={"status": status, **extra},
        content_type="application/json",
        **headers,
    )


@pytest.mark.django_db
def test_owner_reads_own_order_but_not_others(client, member, other_member):
    order = _create(client, member)

    mine = client.get(DETAIL_URL.format(oid=order["id"]), **member)
    theirs = client.get(DETAIL_URL.format(oid=order["id"]), **other_member)

    assert mine.status_code == 200
    assert mine.json()["order_number"] == order["order_number"]
    assert theirs.status_code == 404
    assert theirs.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_get_order_not_found_returns_404(client, member):
    r = client.get(DETAIL_URL.format(oid=str(uuid4())), **member)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_list_all_orders_is_staff_only(client, member, other_member, admin, as_user):
    _create(client, member)
    _create(client, other_member, book_id="bk-3")

    assert client.get(CREATE_URL, **member).status_code == 403

    r = client.get(CREATE_URL, **admin)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert all({"id", "status", "total", "currency"} <= set(x) for x in body["results"])

    pastor = as_user(user_id="p-1", role="PASTOR")
    assert client.get(CREATE_URL, {"status": "PENDING"}, **pastor).json()["count"] == 2
    assert client.get(CREATE_URL, {"status": "COMPLETED"}, **pastor).json()["count"] == 0


@pytest.mark.django_db
def test_list_rejects_bad_filters(client, admin):
    assert client.get(CREATE_URL, {"status": "LOST"}, **admin).status_code == 400
    assert client.get(CREATE_URL, {"page_size": "1000"}, **admin).status_code == 400


@pytest.mark.django_db
def test_my_orders_lists_only_callers_orders(client, member, other_member):
    _create(client, member)
    _create(client, member, book_id="bk-3")
    _create(client, other_member, book_id="bk-3")

    body = client.get("/api/orders/mine/", {"page_size": 1}, **member).json()

    assert body["count"] == 2
    assert len(body["results"]) == 1
    assert body["results"][0]["owner_id"] == "u-1"


@pytest.mark.django_db
def test_status_flow_moves_stock(client, member, worker, catalog):
    order = _create(client, member)
    oid = order["id"]

    assert _move(client, worker, oid, "CONFIRMED").status_code == 200
    r = _move(client, worker, oid, "PROCESSING")
    assert r.status_code == 200
    assert catalog.stock("bk-1") == 3

    r = _move(client, worker, oid, "CANCELLED", notes="customer called")
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"
    assert r.json()["admin_notes"] == "customer called"
    assert catalog.stock("bk-1") == 5


@pytest.mark.django_db
def test_invalid_transition_is_409_and_status_unchanged(client, member, admin):
    order = _create(client, member)

    r = _move(client, admin, order["id"], "SHIPPED")

    assert r.status_code == 409
    assert r.json()["detail"] == "INVALID_TRANSITION"
    assert r.json()["current"] == "PENDING"
    assert client.get(DETAIL_URL.format(oid=order["id"]), **member).json()["status"] == "PENDING"


@pytest.mark.django_db
def test_processing_without_stock_is_422(client, member, other_member, worker, catalog):
    first = _create(client, member, book_id="bk-2", quantity=1)
    second = _create(client, other_member, book_id="bk-2", quantity=1)
    for o in (first, second):
        _move(client, worker, o["id"], "CONFIRMED")

    assert _move(client, worker, first["id"], "PROCESSING").status_code == 200
    r = _move(client, worker, second["id"], "PROCESSING")

    assert r.status_code == 422
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert client.get(DETAIL_URL.format(oid=second["id"]), **other_member).json()["status"] == "CONFIRMED"
    assert catalog.stock("bk-2") == 0


@pytest.mark.django_db
def test_members_cannot_change_status(client, member):
    order = _create(client, member)
    assert _move(client, member, order["id"], "CONFIRMED").status_code == 403


@pytest.mark.django_db
def test_owner_cancel(client, member, other_member):
    order = _create(client, member)

    assert client.patch(CANCEL_URL.format(oid=order["id"]), **other_member).status_code == 404
    r = client.patch(CANCEL_URL.format(oid=order["id"]), **member)

    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"


@pytest.mark.django_db
def test_cancel_paid_order_is_409(client, member, admin):
    order = _create(client, member)
    paid = client.post(
        PAY_URL.format(oid=order["id"]),
        data={"payment_method": "cash", "payment_ref": "rcpt-1"},
        content_type="application/json",
        **admin,
    )
    assert paid.status_code == 200
    assert paid.json()["payment_status"] == "SUCCESSFUL"
    assert paid.json()["payment_method"] == "CASH"

    r = client.patch(CANCEL_URL.format(oid=order["id"]), **member)

    assert r.status_code == 409
    assert r.json()["detail"] == "CONFLICT"
    assert client.get(DETAIL_URL.format(oid=order["id"]), **member).json()["status"] == "PENDING"


@pytest.mark.django_db
def test_process_payment_is_admin_only_and_once(client, member, worker, admin):
    order = _create(client, member)
    url = PAY_URL.format(oid=order["id"])
    data = {"payment_method": "BANK_TRANSFER", "payment_ref": "trf-9"}

    assert client.post(url, data=data, content_type="application/json", **worker).status_code == 403
    assert client.post(url, data=data, content_type="application/json", **admin).status_code == 200
    assert client.post(url, data=data, content_type="application/json", **admin).status_code == 409


@pytest.mark.django_db
def test_delete_only_terminal_orders(client, member, admin):
    order = _create(client, member)
    url = DETAIL_URL.format(oid=order["id"])

    assert client.delete(url, **member).status_code == 403
    assert client.delete(url, **admin).status_code == 409

    client.patch(CANCEL_URL.format(oid=order["id"]), **member)
    assert client.delete(url, **admin).status_code == 204
    assert client.get(url, **member).status_code == 404


@pytest.mark.django_db
def test_stats(client, member, admin):
    order = _create(client, member)
    _create(client, member, book_id="bk-3", quantity=1)
    client.post(
        PAY_URL.format(oid=order["id"]),
        data={"payment_method": "CASH", "payment_ref": "rcpt-1"},
        content_type="application/json",
        **admin,
    )

    assert client.get("/api/orders/stats/", **member).status_code == 403
    stats = client.get("/api/orders/stats/", **admin).json()

    assert stats["total_orders"] == 2
    assert stats["by_status"]["PENDING"] == 2
    assert stats["paid_orders"] == 1
    assert stats["revenue_minor"] == 200_000
