"""
Aggregate math for sales and expenses.

Pure functions with deterministic behavior. No I/O.

The stored aggregate of a parent (montant_total_paye, montant_restant,
statut_paiement) is a function of its installment rows only:

    contribution(row) = 0                                   if row is annule
                      = max(montant_paye - bounced, 0)      otherwise
    total_paid        = sum(contribution)
    remaining         = contractual_total - total_paid
    status            = non_paye            if total_paid == 0
                        paye                if total_paid >= contractual_total - tolerance
                        partiellement_paye  otherwise

``bounced`` is the amount of cancelled checks whose link to the row is still
live.  Recomputing twice over the same rows gives the same result; row
order does not matter.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from payment_kernel.db.types import ZERO
from payment_kernel.domain.dtos import (
    ContributionRow,
    InstallmentStatus,
    ParentAggregate,
    PaymentStatus,
    SaleStatus,
)

DEFAULT_TOLERANCE = Decimal("0.01")


def contribution(row: ContributionRow) -> Decimal:
    """What one installment adds to its parent's total paid."""
    if row.statut == InstallmentStatus.ANNULE:
        return ZERO
    return max(row.montant_paye - row.bounced_check_total, ZERO)


def derive_status(
    total_paid: Decimal,
    contractual_total: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> PaymentStatus:
    if total_paid <= 0:
        return PaymentStatus.NON_PAYE
    if total_paid >= contractual_total - tolerance:
        return PaymentStatus.PAYE
    return PaymentStatus.PARTIELLEMENT_PAYE


def compute_aggregate(
    contractual_total: Decimal,
    rows: Iterable[ContributionRow],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ParentAggregate:
    total_paid = sum((contribution(r) for r in rows), ZERO)
    return ParentAggregate(
        contractual_total=contractual_total,
        total_paid=total_paid,
        remaining=contractual_total - total_paid,
        status=derive_status(total_paid, contractual_total, tolerance),
    )


def projected_total(
    current_total: Decimal,
    old_contribution: Decimal,
    new_contribution: Decimal,
) -> Decimal:
    """Parent total once one installment's contribution is replaced."""
    return current_total - old_contribution + new_contribution


def exceeds_contract(total_paid: Decimal, contractual_total: Decimal) -> bool:
    """The ceiling is exact: tolerance applies to split sums and status only."""
    return total_paid > contractual_total


def next_sale_status(current: str, payment_status: PaymentStatus) -> SaleStatus:
    """
    Sale status after a recomputation.

    A cancelled sale stays cancelled; otherwise ``termine`` tracks full
    settlement in both directions.
    """
    if current == SaleStatus.ANNULE:
        return SaleStatus.ANNULE
    if payment_status == PaymentStatus.PAYE:
        return SaleStatus.TERMINE
    return SaleStatus.EN_COURS
