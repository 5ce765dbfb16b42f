"""Fixed-point monetary scale.

Every amount inside the ledger is an ``int`` in nano-units of the base
currency (1 USD == 1_000_000_000). Values crossing an external boundary in
another scale are converted here and nowhere else.
"""

from decimal import ROUND_CEILING, Decimal

NANO_PER_UNIT = 1_000_000_000
NANO_PER_MILLIONTH = 1_000


def from_millionths(amount: int) -> int:
    """Convert an amount in millionths of a unit to nano-units."""
    return amount * NANO_PER_MILLIONTH


def to_millionths(amount: int) -> int:
    """Convert nano-units to millionths of a unit, rounding up."""
    return -((-amount) // NANO_PER_MILLIONTH)


def units_to_nano(amount: Decimal | int | str) -> int:
    """Convert a decimal amount of base units to nano-units, rounding up."""
    value = Decimal(amount) * NANO_PER_UNIT
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def nano_to_units(amount: int) -> Decimal:
    """Exact decimal representation of a nano-unit amount."""
    return Decimal(amount) / NANO_PER_UNIT


def format_amount(amount: int) -> str:
    """Human-readable base-unit string, e.g. ``-0.0015``."""
    if amount == 0:
        return "0"
    return f"{nano_to_units(amount).normalize():f}"
