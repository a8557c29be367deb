from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or user-supplied amount to a cent-quantized Decimal. None is zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_to_unit(value: Decimal, unit: Decimal) -> Decimal:
    """Round half-up to the nearest multiple of unit (1 = whole rupees, 0.01 = paise, 10 = tens)."""
    unit = Decimal(str(unit))
    if unit <= 0:
        raise ValueError("rounding unit must be positive")
    steps = (Decimal(str(value)) / unit).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return to_decimal(steps * unit)


def money_sum(values: Iterable[Any]) -> Decimal:
    return to_decimal(sum((to_decimal(v) for v in values), ZERO))
