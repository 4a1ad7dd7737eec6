"""Service provider helpers for wiring OrderService with ports.

``get_order_service`` returns an ``OrderService`` backed by the Django ORM
repository. The catalog and inventory ports are the HTTP clients for the
inventory service when ``settings.USE_HTTP_ADAPTERS`` is truthy, and the
process-local ``InMemoryInventory`` otherwise (tests and local development).
"""

from django.conf import settings

from .adapters import InMemoryInventory
from .domain import DEFAULT_DELIVERY_FEE_MINOR, OrderService
from .http_adapters import HttpCatalogClient, HttpInventoryClient
from .repository import OrderRepository

_local_inventory = InMemoryInventory()


def get_local_inventory() -> InMemoryInventory:
    """Return the process-local catalog used when HTTP adapters are disabled."""
    return _local_inventory


def reset_local_inventory() -> InMemoryInventory:
    """Replace the process-local catalog with an empty one and return it."""
    global _local_inventory
    _local_inventory = InMemoryInventory()
    return _local_inventory


def get_order_service() -> OrderService:
    """Return a configured OrderService instance."""
    fee = getattr(settings, "ORDER_DELIVERY_FEE_MINOR", DEFAULT_DELIVERY_FEE_MINOR)
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return OrderService(
            catalog=HttpCatalogClient(),
            inventory=HttpInventoryClient(),
            orders=OrderRepository(),
            delivery_fee_minor=fee,
        )
    inventory = get_local_inventory()
    return OrderService(
        catalog=inventory,
        inventory=inventory,
        orders=OrderRepository(),
        delivery_fee_minor=fee,
    )
