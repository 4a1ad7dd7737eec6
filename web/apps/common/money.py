"""Fixed-point money helpers.

Amounts are held as integer minor units (kobo) inside the system and only
converted to ``Decimal`` major units at the HTTP and provider boundaries.
"""

from decimal import Decimal, ROUND_HALF_UP

MINOR_PER_MAJOR = 100
DEFAULT_CURRENCY = "NGN"

_CENT = Decimal("0.01")


def to_minor(amount) -> int:
    """Convert a major-unit amount (``Decimal``, ``int`` or numeric string) to minor units.

    Floats are accepted but routed through ``str`` so ``19.99`` becomes 1999
    rather than 1998.
    """
    if isinstance(amount, float):
        amount = str(amount)
    value = Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(value * MINOR_PER_MAJOR)


def to_major(amount_minor: int) -> Decimal:
    """Convert integer minor units to a two-decimal ``Decimal``."""
    return (Decimal(amount_minor) / MINOR_PER_MAJOR).quantize(_CENT)
