"""
Module: payment_kernel.db.types
Responsibility: Money helpers shared by models,
    domain code and services.
Architecture position: Kernel > DB.  Importable from every layer; imports
    nothing from the package.

Invariants enforced:
    - No floats.  Amounts enter the core through ``to_money`` which refuses
      float input and goes through ``str`` for everything else.
    - ``round_money`` is the single rounding function (ROUND_HALF_UP).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Quantise a monetary value.

    Every stored amount goes through here; callers never call
    ``Decimal.quantize`` themselves.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def to_money(value, field: str = "amount") -> Decimal:
    """
    Coerce API input (Decimal, int or numeric string) to Decimal.

    Raises:
        TypeError: for float input (binary floats cannot carry centimes).
        ValueError: for anything that is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{field} must be Decimal, int or str, not {type(value).__name__}")
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field} is not a finite number: {value!r}")
    return result
