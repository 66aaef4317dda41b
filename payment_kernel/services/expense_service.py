"""
ExpenseService -- creation of project expenses.

Payments against an expense go through the installment ledger like sale
payments; this service only opens the expense with a consistent, empty
aggregate.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from payment_kernel.db.types import round_money, to_money
from payment_kernel.domain.dtos import PaymentStatus
from payment_kernel.domain.money_split import DECLARED_PAIR, resolve_pair
from payment_kernel.exceptions import NonPositiveAmountError, ProjectNotFoundError, ValidationError
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Expense, Project
from payment_kernel.services.base import BaseService
from payment_kernel.services.installment_ledger import InstallmentLedger

logger = get_logger("services.expense")


class ExpenseService(BaseService):

    def __init__(self, session, config=None, ledger: InstallmentLedger | None = None):
        super().__init__(session, config)
        self.ledger = ledger or InstallmentLedger(session, self.config)

    def create_expense(
        self,
        project_id: UUID,
        nom: str,
        montant_total: Decimal,
        actor_id: UUID,
        mode_paiement: str | None = None,
        description: str | None = None,
        montant_declare: Decimal | None = None,
        montant_non_declare: Decimal | None = None,
    ) -> Expense:
        places = self.config.money_decimal_places
        total = round_money(to_money(montant_total, "montant_total"), places)
        if total <= 0:
            raise NonPositiveAmountError("montant_total", total)
        if not nom or not nom.strip():
            raise ValidationError("Expense name is required")

        declare = non_declare = None
        if montant_declare is not None or montant_non_declare is not None:
            declare, non_declare = resolve_pair(
                DECLARED_PAIR,
                total,
                None if montant_declare is None else round_money(to_money(montant_declare), places),
                None
                if montant_non_declare is None
                else round_money(to_money(montant_non_declare), places),
                self.config.amount_tolerance,
            )
        if mode_paiement is not None:
            self.ledger.resolve_method(mode_paiement)
        if self.session.get(Project, project_id) is None:
            raise ProjectNotFoundError(project_id)

        expense = Expense(
            project_id=project_id,
            nom=nom.strip(),
            montant_total=total,
            montant_declare=declare,
            montant_non_declare=non_declare,
            mode_paiement=mode_paiement,
            montant_total_paye=Decimal("0"),
            montant_restant=total,
            statut_paiement=PaymentStatus.NON_PAYE.value,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(expense)
        self.session.flush()

        logger.info(
            "expense_created",
            extra={
                "expense_id": str(expense.id),
                "project_id": str(project_id),
                "montant_total": total,
            },
        )
        return expense
