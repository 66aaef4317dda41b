"""
Money Split -- declared / non-declared and cash / check breakdown.

Pure functions with deterministic behavior. No I/O.

Every payment carries two independent breakdowns of the same total:

    montant_paye = montant_declare + montant_non_declare   (reporting)
    montant_paye = montant_espece  + montant_cheque        (instrument)

Rules:
    - The amount must be strictly positive.
    - A supplied pair must sum to the amount within the tolerance.  When
      only one side of a pair is supplied, the other is derived as
      ``amount - supplied`` and may not be negative.
    - The instrument pair follows the payment method: a cash-only method
      books everything on the espece leg, a check-only method on the
      cheque leg.  Supplying the wrong leg is rejected.
    - A mixed method (both legs, e.g. ``cheque_espece``) must come with an
      explicit instrument pair AND an explicit declared pair.  No ratio is
      ever invented.
    - Without an explicit declared pair a single-leg payment is fully
      declared, unless ``require_declared_split`` is set.

Usage:
    from payment_kernel.domain.money_split import split_payment

    result = split_payment(
        Decimal("150000"),
        CHEQUE_ESPECE,
        SplitInput(
            montant_declare=Decimal("100000"),
            montant_non_declare=Decimal("50000"),
            montant_espece=Decimal("50000"),
            montant_cheque=Decimal("100000"),
        ),
    )
"""

from __future__ import annotations

from decimal import Decimal

from payment_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money, to_money
from payment_kernel.domain.dtos import PaymentMethodSpec, SplitInput, SplitResult
from payment_kernel.exceptions import (
    InvalidSplitError,
    MissingSplitError,
    NonPositiveAmountError,
)

DEFAULT_TOLERANCE = Decimal("0.01")

DECLARED_PAIR = "declared/non-declared"
LEG_PAIR = "cash/check"


def _q(value, places: int, field: str) -> Decimal | None:
    return None if value is None else round_money(to_money(value, field), places)


def resolve_pair(
    pair: str,
    amount: Decimal,
    first: Decimal | None,
    second: Decimal | None,
    tolerance: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Complete and validate one pair of sub-amounts.

    At least one of ``first`` / ``second`` must be supplied.
    """
    for part in (first, second):
        if part is not None and part < 0:
            raise InvalidSplitError(pair, amount, (first, second), "negative sub-amount")

    if first is None and second is None:
        raise ValueError(f"resolve_pair({pair}) needs at least one sub-amount")

    if first is None:
        first = amount - second
    elif second is None:
        second = amount - first

    if first < -tolerance or second < -tolerance:
        raise InvalidSplitError(
            pair, amount, (first, second), "sub-amount exceeds the payment total"
        )
    # A derived side inside the tolerance band is clamped to zero
    first = max(first, ZERO)
    second = max(second, ZERO)

    if abs(first + second - amount) > tolerance:
        raise InvalidSplitError(
            pair, amount, (first, second), f"sub-amounts add up to {first + second}"
        )
    return first, second


def _resolve_legs(
    amount: Decimal,
    method: PaymentMethodSpec,
    espece: Decimal | None,
    cheque: Decimal | None,
    tolerance: Decimal,
) -> tuple[Decimal, Decimal]:
    if method.is_mixed:
        if espece is None and cheque is None:
            raise MissingSplitError(method.code, LEG_PAIR)
        return resolve_pair(LEG_PAIR, amount, espece, cheque, tolerance)

    # Single-leg method: the leg is implied, a contradicting value is an error
    if method.has_cash_leg:
        if cheque is not None and cheque != 0:
            raise InvalidSplitError(
                LEG_PAIR, amount, (espece, cheque),
                f"method '{method.code}' has no check leg",
            )
        if espece is not None and abs(espece - amount) > tolerance:
            raise InvalidSplitError(
                LEG_PAIR, amount, (espece, cheque),
                f"method '{method.code}' books the full amount as cash",
            )
        return (amount if espece is None else espece), ZERO

    if espece is not None and espece != 0:
        raise InvalidSplitError(
            LEG_PAIR, amount, (espece, cheque),
            f"method '{method.code}' has no cash leg",
        )
    if cheque is not None and abs(cheque - amount) > tolerance:
        raise InvalidSplitError(
            LEG_PAIR, amount, (espece, cheque),
            f"method '{method.code}' books the full amount as check",
        )
    return ZERO, (amount if cheque is None else cheque)


def split_payment(
    amount: Decimal,
    method: PaymentMethodSpec,
    splits: SplitInput | None = None,
    *,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    require_declared_split: bool = False,
) -> SplitResult:
    """
    Validate or complete the breakdown of one payment.

    Raises:
        NonPositiveAmountError: amount <= 0.
        MissingSplitError: a mixed method without explicit pairs, or any
            payment without declared pair when ``require_declared_split``.
        InvalidSplitError: a pair that does not add up, a negative
            sub-amount, or a leg the method does not have.
    """
    splits = splits or SplitInput()
    amount = round_money(to_money(amount, "montant_paye"), decimal_places)
    if amount <= 0:
        raise NonPositiveAmountError("montant_paye", amount)

    declare = _q(splits.montant_declare, decimal_places, "montant_declare")
    non_declare = _q(splits.montant_non_declare, decimal_places, "montant_non_declare")
    espece = _q(splits.montant_espece, decimal_places, "montant_espece")
    cheque = _q(splits.montant_cheque, decimal_places, "montant_cheque")

    espece, cheque = _resolve_legs(amount, method, espece, cheque, tolerance)

    if declare is None and non_declare is None:
        if method.is_mixed or require_declared_split:
            raise MissingSplitError(method.code, DECLARED_PAIR)
        declare, non_declare = amount, ZERO
    else:
        declare, non_declare = resolve_pair(
            DECLARED_PAIR, amount, declare, non_declare, tolerance
        )

    return SplitResult(
        amount=amount,
        method=method.code,
        montant_declare=declare,
        montant_non_declare=non_declare,
        montant_espece=espece,
        montant_cheque=cheque,
    )


def pair_violations(
    montant_paye: Decimal,
    montant_declare: Decimal,
    montant_non_declare: Decimal,
    montant_espece: Decimal,
    montant_cheque: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[str]:
    """
    Describe which pair invariants a stored row breaks (empty when none).

    Rows without a payment are not checked.
    """
    if montant_paye <= 0:
        return []
    problems = []
    if abs(montant_declare + montant_non_declare - montant_paye) > tolerance:
        problems.append(
            f"declare {montant_declare} + non_declare {montant_non_declare} "
            f"!= paye {montant_paye}"
        )
    if abs(montant_espece + montant_cheque - montant_paye) > tolerance:
        problems.append(
            f"espece {montant_espece} + cheque {montant_cheque} != paye {montant_paye}"
        )
    return problems
