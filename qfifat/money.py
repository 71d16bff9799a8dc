from decimal import Decimal, ROUND_HALF_UP
from typing import Any

UNIT = Decimal("1")
CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce DB/JSON numbers (SQLite hands back floats) to a 2dp Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_units(value: Decimal) -> Decimal:
    return to_money(Decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP))
