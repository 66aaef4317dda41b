"""
Tests for the check tracker: issue, clear, cancel, and what happens to
checks when the payment that produced them is cancelled or re-recorded.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from payment_kernel.config import ReconciliationConfig
from payment_kernel.domain.dtos import CheckStatus, CheckType, PaymentInput, PaymentStatus, SplitInput
from payment_kernel.exceptions import (
    CheckAmountMismatchError,
    CheckNotFoundError,
    DuplicateCheckNumberError,
    InvalidCheckTransitionError,
    InvalidDateError,
    InvalidSplitError,
    MissingSplitError,
    ValidationError,
)
from payment_kernel.models import Check
from payment_kernel.selectors.check_selector import CheckFilter
from payment_kernel.services.payment_commands import PaymentCommandService


def _mixed_with_checks(payments, *checks):
    cheque = sum((c.montant for c in checks), Decimal("0"))
    return payments.mixed(
        Decimal("50000") + cheque,
        declare=Decimal("50000") + cheque,
        non_declare="0",
        espece="50000",
        cheque=cheque,
        checks=checks,
    )


class TestIssueWithPayment:

    def test_checks_issued_and_linked(self, commands, sale, payments, test_actor_id):
        payment = _mixed_with_checks(
            payments, payments.check("0001", "60000"), payments.check("0002", "40000")
        )

        result = commands.add_payment("sale", sale.id, payment, test_actor_id)

        assert len(result.checks) == 2
        for check in result.checks:
            assert check.statut == CheckStatus.EMIS
            assert check.type_cheque == CheckType.RECU
            assert check.sale_id == sale.id
            assert check.project_id == sale.project_id
            assert check.payment_plan_id == result.installment.id
            assert check.nom_beneficiaire == "Promoteur"
            assert check.link_stale is False
        assert result.installment.montant_cheque == Decimal("100000")

    def test_expense_checks_are_given(self, commands, expense, test_actor_id, payments):
        payment = PaymentInput(
            amount=Decimal("20000"),
            method="cheque",
            checks=(payments.check("E-1", "20000", issuer="Atlas Immobilier"),),
        )
        result = commands.add_payment("expense", expense.id, payment, test_actor_id)

        (check,) = result.checks
        assert check.type_cheque == CheckType.DONNE
        assert check.expense_id == expense.id
        assert check.expense_payment_plan_id == result.installment.id
        assert check.nom_beneficiaire is None

    def test_checks_must_match_check_leg(self, commands, sale, payments, check_selector, test_actor_id):
        payment = payments.mixed(
            "150000", "100000", "50000", "50000", "100000",
            checks=[payments.check("0001", "90000")],
        )
        with pytest.raises(CheckAmountMismatchError) as exc_info:
            commands.add_payment("sale", sale.id, payment, test_actor_id)

        assert Decimal(exc_info.value.check_leg) == Decimal("100000")
        assert Decimal(exc_info.value.checks_total) == Decimal("90000")
        assert check_selector.list_checks() == []

    def test_checks_on_cash_method_rejected(self, commands, sale, payments, test_actor_id):
        payment = PaymentInput(
            amount=Decimal("1000"), method="espece", checks=(payments.check("0001", "1000"),)
        )
        with pytest.raises(InvalidSplitError):
            commands.add_payment("sale", sale.id, payment, test_actor_id)

    def test_check_details_required_when_configured(
        self, session, sale, payments, deterministic_clock, test_actor_id
    ):
        strict = PaymentCommandService(
            session, ReconciliationConfig(require_check_details=True), clock=deterministic_clock
        )
        payment = payments.mixed("150000", "100000", "50000", "50000", "100000")

        with pytest.raises(MissingSplitError):
            strict.add_payment("sale", sale.id, payment, test_actor_id)

    def test_check_without_number_rejected(self, commands, sale, payments, test_actor_id):
        payment = PaymentInput(
            amount=Decimal("1000"), method="cheque", checks=(payments.check("  ", "1000"),)
        )
        with pytest.raises(ValidationError):
            commands.add_payment("sale", sale.id, payment, test_actor_id)

    def test_expected_clearing_before_issue_rejected(self, commands, sale, payments, test_actor_id):
        bad = payments.check(
            "0001", "1000", date_emission=date(2024, 2, 1), date_encaissement=date(2024, 1, 15)
        )
        payment = PaymentInput(amount=Decimal("1000"), method="cheque", checks=(bad,))
        with pytest.raises(InvalidDateError):
            commands.add_payment("sale", sale.id, payment, test_actor_id)


class TestCheckNumbers:

    def test_same_number_same_issuer_rejected(self, commands, make_sale, payments, test_actor_id):
        first, second = make_sale(), make_sale()
        commands.add_payment(
            "sale", first.id,
            PaymentInput(amount=Decimal("1000"), method="cheque", checks=(payments.check("777", "1000"),)),
            test_actor_id,
        )

        with pytest.raises(DuplicateCheckNumberError) as exc_info:
            commands.add_payment(
                "sale", second.id,
                PaymentInput(amount=Decimal("500"), method="cheque", checks=(payments.check("777", "500"),)),
                test_actor_id,
            )
        assert exc_info.value.numero_cheque == "777"
        assert exc_info.value.nom_emetteur == "Banque Populaire"

    def test_same_number_other_issuer_accepted(self, commands, sale, payments, test_actor_id):
        commands.add_payment(
            "sale", sale.id,
            PaymentInput(amount=Decimal("1000"), method="cheque", checks=(payments.check("777", "1000"),)),
            test_actor_id,
        )
        result = commands.add_payment(
            "sale", sale.id,
            PaymentInput(
                amount=Decimal("1000"),
                method="cheque",
                checks=(payments.check("777", "1000", issuer="Attijariwafa"),),
            ),
            test_actor_id,
        )
        assert result.checks[0].nom_emetteur == "Attijariwafa"

    def test_same_number_twice_in_one_payment(self, commands, sale, payments, test_actor_id):
        payment = PaymentInput(
            amount=Decimal("2000"),
            method="cheque",
            checks=(payments.check("1", "1000"), payments.check("1", "1000")),
        )
        with pytest.raises(DuplicateCheckNumberError):
            commands.add_payment("sale", sale.id, payment, test_actor_id)

    def test_cancelled_check_keeps_its_number(self, commands, project, payments, test_actor_id):
        check = commands.issue_check(
            payments.check("900", "500"), CheckType.RECU, test_actor_id, project_id=project.id
        )
        commands.cancel_check(check.id, test_actor_id)

        with pytest.raises(DuplicateCheckNumberError):
            commands.issue_check(
                payments.check("900", "500"), CheckType.RECU, test_actor_id, project_id=project.id
            )

    def test_issuer_whitespace_ignored(self, commands, project, payments, test_actor_id):
        commands.issue_check(
            payments.check("901", "500", issuer="CIH"), "recu", test_actor_id, project_id=project.id
        )
        with pytest.raises(DuplicateCheckNumberError):
            commands.issue_check(
                payments.check("901", "700", issuer="  CIH "), "recu", test_actor_id, project_id=project.id
            )

    def test_without_issuer_numbers_are_one_scope(self, commands, project, payments, test_actor_id):
        commands.issue_check(
            payments.check("902", "500", issuer=None), "recu", test_actor_id, project_id=project.id
        )
        with pytest.raises(DuplicateCheckNumberError) as exc_info:
            commands.issue_check(
                payments.check("902", "500", issuer=None), "recu", test_actor_id, project_id=project.id
            )
        assert exc_info.value.nom_emetteur is None

    def test_schema_rejects_duplicate_without_issuer(self, session, test_actor_id):
        def row():
            return Check(
                type_cheque=CheckType.RECU.value,
                numero_cheque="903",
                montant=Decimal("500"),
                date_emission=date(2024, 1, 1),
                nom_emetteur=None,
                created_by_id=test_actor_id,
            )

        session.add(row())
        session.flush()

        session.add(row())
        with pytest.raises(IntegrityError):
            session.flush()

    def test_lost_race_reported_as_duplicate(
        self, commands, make_sale, payments, statements, check_selector, monkeypatch, test_actor_id
    ):
        first, second = make_sale(), make_sale()
        commands.add_payment(
            "sale", first.id,
            PaymentInput(amount=Decimal("1000"), method="cheque", checks=(payments.check("904", "1000"),)),
            test_actor_id,
        )
        # Both requests validated before either inserted
        monkeypatch.setattr(commands._checks, "validate_inputs", lambda checks: None)

        with pytest.raises(DuplicateCheckNumberError) as exc_info:
            commands.add_payment(
                "sale", second.id,
                PaymentInput(amount=Decimal("500"), method="cheque", checks=(payments.check("904", "500"),)),
                test_actor_id,
            )

        assert exc_info.value.numero_cheque == "904"
        assert statements.get_sale(second.id).aggregate.total_paid == Decimal("0")
        assert statements.list_installments("sale", second.id) == []
        assert len(check_selector.list_checks(CheckFilter(sale_id=first.id))) == 1


class TestTransitions:

    @pytest.fixture
    def issued(self, commands, sale, payments, test_actor_id):
        payment = PaymentInput(
            amount=Decimal("100000"),
            method="cheque",
            checks=(payments.check("5001", "100000", date_emission=date(2024, 1, 10)),),
        )
        return commands.add_payment("sale", sale.id, payment, test_actor_id)

    def test_clear(self, commands, issued, test_actor_id):
        check = commands.clear_check(issued.checks[0].id, date(2024, 1, 20), test_actor_id)
        assert check.statut == CheckStatus.ENCAISSE
        assert check.date_encaissement == date(2024, 1, 20)

    def test_clear_before_issue_date_rejected(self, commands, issued, test_actor_id):
        with pytest.raises(InvalidDateError):
            commands.clear_check(issued.checks[0].id, date(2024, 1, 5), test_actor_id)

    def test_clear_on_issue_date_accepted(self, commands, issued, test_actor_id):
        check = commands.clear_check(issued.checks[0].id, date(2024, 1, 10), test_actor_id)
        assert check.statut == CheckStatus.ENCAISSE

    def test_cleared_check_is_terminal(self, commands, issued, test_actor_id):
        check_id = issued.checks[0].id
        commands.clear_check(check_id, date(2024, 1, 20), test_actor_id)

        with pytest.raises(InvalidCheckTransitionError):
            commands.clear_check(check_id, date(2024, 1, 21), test_actor_id)
        with pytest.raises(InvalidCheckTransitionError) as exc_info:
            commands.cancel_check(check_id, test_actor_id)
        assert exc_info.value.from_status == "encaisse"

    def test_cancelled_check_is_terminal(self, commands, issued, test_actor_id):
        check_id = issued.checks[0].id
        commands.cancel_check(check_id, test_actor_id)

        with pytest.raises(InvalidCheckTransitionError):
            commands.clear_check(check_id, date(2024, 1, 20), test_actor_id)

    def test_unknown_check(self, commands, test_actor_id):
        with pytest.raises(CheckNotFoundError):
            commands.clear_check(uuid4(), date(2024, 1, 20), test_actor_id)

    def test_clearing_does_not_change_aggregate(self, commands, issued, statements, test_actor_id, sale):
        commands.clear_check(issued.checks[0].id, date(2024, 1, 20), test_actor_id)
        assert statements.get_sale(sale.id).aggregate.total_paid == Decimal("100000")


class TestBouncedCheck:

    def test_cancelled_linked_check_reduces_total(
        self, commands, sale, payments, statements, test_actor_id
    ):
        result = commands.add_payment(
            "sale",
            sale.id,
            payments.mixed(
                "150000", "100000", "50000", "50000", "100000",
                checks=[payments.check("0001", "100000")],
            ),
            test_actor_id,
        )
        assert result.aggregate.total_paid == Decimal("150000")

        commands.cancel_check(result.checks[0].id, test_actor_id)

        info = statements.get_sale(sale.id)
        assert info.aggregate.total_paid == Decimal("50000")
        assert info.aggregate.remaining == Decimal("450000")
        assert info.aggregate.status == PaymentStatus.PARTIELLEMENT_PAYE

    def test_bounced_amount_is_available_again(self, commands, sale, payments, test_actor_id):
        result = commands.add_payment(
            "sale",
            sale.id,
            PaymentInput(
                amount=Decimal("500000"),
                method="cheque",
                checks=(payments.check("0001", "500000"),),
            ),
            test_actor_id,
        )
        commands.cancel_check(result.checks[0].id, test_actor_id)

        replacement = commands.add_payment("sale", sale.id, payments.cash("500000"), test_actor_id)
        assert replacement.aggregate.total_paid == Decimal("500000")

    def test_standalone_check_never_counts(
        self, commands, sale, payments, statements, test_actor_id
    ):
        check = commands.issue_check(
            payments.check("S-1", "25000"), CheckType.RECU, test_actor_id,
            project_id=sale.project_id, sale_id=sale.id,
        )
        assert check.payment_plan_id is None

        commands.cancel_check(check.id, test_actor_id)
        assert statements.get_sale(sale.id).aggregate.total_paid == Decimal("0")


class TestSupersededChecks:

    def test_cancel_payment_detaches_checks(
        self, commands, sale, payments, check_selector, test_actor_id
    ):
        result = commands.add_payment(
            "sale",
            sale.id,
            PaymentInput(
                amount=Decimal("100000"),
                method="cheque",
                checks=(payments.check("1", "60000"), payments.check("2", "40000")),
            ),
            test_actor_id,
        )
        cleared_id = result.checks[0].id
        commands.clear_check(cleared_id, date(2024, 1, 5), test_actor_id)

        commands.cancel_payment("sale", result.installment.id, test_actor_id)

        checks = {c.numero_cheque: c for c in check_selector.list_checks(CheckFilter(sale_id=sale.id))}
        assert checks["1"].statut == CheckStatus.ENCAISSE
        assert checks["1"].link_stale is True
        assert checks["2"].statut == CheckStatus.ANNULE
        assert checks["2"].link_stale is True
        # Links kept for lookup
        assert checks["2"].payment_plan_id == result.installment.id

    def test_edit_keeps_resubmitted_checks(
        self, commands, sale, payments, check_selector, test_actor_id
    ):
        first = payments.check("10", "30000")
        result = commands.add_payment(
            "sale",
            sale.id,
            PaymentInput(amount=Decimal("30000"), method="cheque", checks=(first,)),
            test_actor_id,
        )

        edited = commands.edit_payment(
            "sale",
            result.installment.id,
            PaymentInput(
                amount=Decimal("50000"),
                method="cheque",
                checks=(first, payments.check("11", "20000")),
            ),
            test_actor_id,
        )

        assert [c.numero_cheque for c in edited.checks] == ["11"]
        listed = check_selector.list_checks(CheckFilter(sale_id=sale.id))
        assert {c.numero_cheque: c.statut for c in listed} == {
            "10": CheckStatus.EMIS,
            "11": CheckStatus.EMIS,
        }
        assert not any(c.link_stale for c in listed)
        assert edited.aggregate.total_paid == Decimal("50000")

    def test_edit_to_cash_supersedes_checks(
        self, commands, sale, payments, check_selector, statements, test_actor_id
    ):
        result = commands.add_payment(
            "sale",
            sale.id,
            PaymentInput(amount=Decimal("30000"), method="cheque", checks=(payments.check("20", "30000"),)),
            test_actor_id,
        )

        commands.edit_payment("sale", result.installment.id, payments.cash("30000"), test_actor_id)

        (check,) = check_selector.list_checks(CheckFilter(sale_id=sale.id))
        assert check.statut == CheckStatus.ANNULE
        assert check.link_stale is True
        # A superseded check is not a bounce
        assert statements.get_sale(sale.id).aggregate.total_paid == Decimal("30000")

    def test_edit_without_checks_keeps_same_leg(
        self, commands, sale, payments, check_selector, test_actor_id
    ):
        result = commands.add_payment(
            "sale",
            sale.id,
            payments.mixed("80000", "80000", "0", "50000", "30000", checks=[payments.check("30", "30000")]),
            test_actor_id,
        )

        commands.edit_payment(
            "sale",
            result.installment.id,
            PaymentInput(
                amount=Decimal("90000"),
                method="cheque_espece",
                splits=SplitInput(
                    montant_declare=Decimal("90000"),
                    montant_non_declare=Decimal("0"),
                    montant_espece=Decimal("60000"),
                    montant_cheque=Decimal("30000"),
                ),
            ),
            test_actor_id,
        )

        (check,) = check_selector.list_checks(CheckFilter(sale_id=sale.id))
        assert check.statut == CheckStatus.EMIS
        assert check.link_stale is False

    def test_resubmitting_number_with_new_amount_rejected(self, commands, sale, payments, test_actor_id):
        result = commands.add_payment(
            "sale",
            sale.id,
            PaymentInput(amount=Decimal("30000"), method="cheque", checks=(payments.check("40", "30000"),)),
            test_actor_id,
        )
        with pytest.raises(DuplicateCheckNumberError):
            commands.edit_payment(
                "sale",
                result.installment.id,
                PaymentInput(amount=Decimal("35000"), method="cheque", checks=(payments.check("40", "35000"),)),
                test_actor_id,
            )
