"""Tests for the pure aggregate math (payment_kernel.domain.aggregates)."""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from payment_kernel.domain.aggregates import (
    compute_aggregate,
    contribution,
    derive_status,
    exceeds_contract,
    next_sale_status,
    projected_total,
)
from payment_kernel.domain.dtos import (
    ContributionRow,
    InstallmentStatus,
    PaymentStatus,
    SaleStatus,
)


def row(statut: InstallmentStatus, paye: str, bounced: str = "0") -> ContributionRow:
    return ContributionRow(
        statut=statut.value,
        montant_paye=Decimal(paye),
        bounced_check_total=Decimal(bounced),
    )


class TestContribution:

    def test_paid_row_contributes_its_amount(self):
        assert contribution(row(InstallmentStatus.PAYE, "1500")) == Decimal("1500")

    def test_cancelled_row_contributes_nothing(self):
        assert contribution(row(InstallmentStatus.ANNULE, "1500")) == Decimal("0")

    def test_bounced_checks_are_subtracted(self):
        assert contribution(row(InstallmentStatus.PAYE, "1500", bounced="1000")) == Decimal("500")

    def test_contribution_never_negative(self):
        assert contribution(row(InstallmentStatus.PAYE, "100", bounced="300")) == Decimal("0")

    def test_unpaid_row_contributes_zero(self):
        assert contribution(row(InstallmentStatus.EN_ATTENTE, "0")) == Decimal("0")


class TestDeriveStatus:

    @pytest.mark.parametrize(
        "paid, expected",
        [
            ("0", PaymentStatus.NON_PAYE),
            ("0.01", PaymentStatus.PARTIELLEMENT_PAYE),
            ("499999.98", PaymentStatus.PARTIELLEMENT_PAYE),
            ("499999.99", PaymentStatus.PAYE),
            ("500000", PaymentStatus.PAYE),
        ],
    )
    def test_status_thresholds(self, paid, expected):
        assert derive_status(Decimal(paid), Decimal("500000")) == expected


class TestComputeAggregate:

    def test_mixed_rows(self):
        aggregate = compute_aggregate(
            Decimal("500000"),
            [
                row(InstallmentStatus.PAYE, "150000"),
                row(InstallmentStatus.ANNULE, "100000"),
                row(InstallmentStatus.EN_RETARD, "0"),
            ],
        )
        assert aggregate.total_paid == Decimal("150000")
        assert aggregate.remaining == Decimal("350000")
        assert aggregate.status == PaymentStatus.PARTIELLEMENT_PAYE

    def test_no_rows(self):
        aggregate = compute_aggregate(Decimal("1000"), [])
        assert aggregate.total_paid == Decimal("0")
        assert aggregate.remaining == Decimal("1000")
        assert aggregate.status == PaymentStatus.NON_PAYE

    @given(st.lists(st.integers(min_value=0, max_value=10_000), max_size=20))
    def test_same_rows_same_aggregate(self, paid):
        rows = [row(InstallmentStatus.PAYE, str(p)) for p in paid]
        contractual = Decimal(sum(paid) + 1)

        first = compute_aggregate(contractual, rows)
        second = compute_aggregate(contractual, rows)

        assert first == second
        assert first.total_paid + first.remaining == contractual


class TestOverAllocationMath:

    def test_replacing_contribution(self):
        assert projected_total(Decimal("400"), Decimal("100"), Decimal("250")) == Decimal("550")

    def test_exact_total_is_not_over(self):
        assert not exceeds_contract(Decimal("1000.00"), Decimal("1000"))

    def test_one_centime_over_is_over(self):
        assert exceeds_contract(Decimal("1000.01"), Decimal("1000"))


class TestSaleStatus:

    def test_settled_sale_is_finished(self):
        assert next_sale_status("en_cours", PaymentStatus.PAYE) == SaleStatus.TERMINE

    def test_finished_sale_reopens_when_payment_cancelled(self):
        assert next_sale_status("termine", PaymentStatus.PARTIELLEMENT_PAYE) == SaleStatus.EN_COURS

    def test_cancelled_sale_stays_cancelled(self):
        assert next_sale_status("annule", PaymentStatus.PAYE) == SaleStatus.ANNULE
