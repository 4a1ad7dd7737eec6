import pytest

BOOKS = [
    # id, title, price (kobo), stock
    ("bk-1", "Daily Bread Devotional", 100_000, 5),
    ("bk-2", "Psalms for Today", 250_000, 1),
    ("bk-3", "Hymns Old and New", 80_000, 10),
]


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYSTACK_SECRET_KEY = "sk_test_secret"
    settings.PAYSTACK_BASE_URL = "https://paystack.test"
    settings.PAYSTACK_REQUIRE_WEBHOOK_SIGNATURE = True


@pytest.fixture(autouse=True)
def fresh_runtime_state():
    """Reset process-wide breakers and throttle counters between tests."""
    from django.core.cache import cache

    from gateway.resilience import get_breaker

    cache.clear()
    for name in ("inventory", "paystack"):
        get_breaker(name).reset()
    yield


@pytest.fixture(autouse=True)
def catalog():
    """Seeded process-local catalog used by the order service in tests."""
    from apps.orders.domain import Book
    from apps.orders.providers import reset_local_inventory

    inventory = reset_local_inventory()
    for book_id, title, price, stock in BOOKS:
        inventory.put(Book(id=book_id, title=title, price_minor=price, stock_quantity=stock))
    return inventory


def identity(user_id="u-1", role="MEMBER", email="member@example.com") -> dict:
    """Headers the identity gateway forwards, in Django test client form."""
    headers = {"HTTP_X_USER_ID": user_id, "HTTP_X_USER_ROLE": role}
    if email:
        headers["HTTP_X_USER_EMAIL"] = email
    return headers


@pytest.fixture
def as_user():
    return identity


@pytest.fixture
def member():
    return identity()


@pytest.fixture
def other_member():
    return identity(user_id="u-2", email="other@example.com")


@pytest.fixture
def admin():
    return identity(user_id="admin-1", role="ADMIN", email="admin@example.com")


@pytest.fixture
def worker():
    return identity(user_id="worker-1", role="WORKER", email="worker@example.com")
