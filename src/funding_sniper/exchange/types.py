"""Exchange-specific type definitions and rounding utilities.

All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal


@dataclass(frozen=True)
class InstrumentPrecision:
    """Trading constraints for a perpetual contract.

    Fetched once at startup from the exchange's instrument metadata and never
    refreshed during a run.
    """

    symbol: str
    price_precision: int  # decimal places
    quantity_precision: int  # decimal places
    min_qty: Decimal
    tick_size: Decimal


def floor_to_precision(value: Decimal, places: int) -> Decimal:
    """Truncate a value to a fixed number of decimal places.

    >>> floor_to_precision(Decimal("30.0009"), 3)
    Decimal('30.000')
    """
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)


def snap_to_tick(price: Decimal, tick_size: Decimal) -> Decimal:
    """Round a price to the NEAREST multiple of tick_size (half up).

    Unlike quantities, trigger prices are snapped to the closest valid tick,
    so the result can land on either side of the input.
    """
    if tick_size <= 0:
        return price
    ticks = (price / tick_size).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return ticks * tick_size


def format_price(price: Decimal, places: int) -> Decimal:
    """Quantize a price to the instrument's price precision (half up)."""
    return price.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def decimal_places(step: Decimal) -> int:
    """Number of decimal places implied by a step size (0.001 -> 3, 1 -> 0)."""
    exponent = step.normalize().as_tuple().exponent
    return max(0, -int(exponent))
