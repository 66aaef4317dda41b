"""
Module: payment_kernel.selectors.statement_selector
Responsibility: Read-only views of projects, sales, expenses and their
    installment schedules.

A statement is a parent with its installments ordered by numero_echeance
(cancelled rows included, flagged by their status) and every check that was
ever linked to it.  The aggregate shown is the stored one; the audit
selector compares it with a recomputation.
"""

from uuid import UUID

from sqlalchemy import select

from payment_kernel.domain.dtos import (
    CheckInfo,
    ExpenseInfo,
    InstallmentInfo,
    ParentKind,
    ParentStatement,
    ProjectInfo,
    SaleInfo,
    SaleStatus,
)
from payment_kernel.exceptions import InstallmentNotFoundError, ProjectNotFoundError
from payment_kernel.models import Check, Expense, Project, Sale
from payment_kernel.selectors.base import BaseSelector
from payment_kernel.services.parents import (
    EXPENSE_BINDING,
    SALE_BINDING,
    ParentBinding,
    binding_for,
)


class StatementSelector(BaseSelector):
    """Projects, parents and schedules as frozen DTOs."""

    def get_project(self, project_id: UUID) -> ProjectInfo:
        project = self.session.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return ProjectInfo.from_model(project)

    def list_projects(self) -> list[ProjectInfo]:
        rows = self.session.execute(select(Project).order_by(Project.nom)).scalars()
        return [ProjectInfo.from_model(p) for p in rows]

    def get_sale(self, sale_id: UUID) -> SaleInfo:
        return SaleInfo.from_model(self._parent(SALE_BINDING, sale_id))

    def get_expense(self, expense_id: UUID) -> ExpenseInfo:
        return ExpenseInfo.from_model(self._parent(EXPENSE_BINDING, expense_id))

    def list_sales(self, project_id: UUID, include_cancelled: bool = True) -> list[SaleInfo]:
        query = select(Sale).where(Sale.project_id == project_id)
        if not include_cancelled:
            query = query.where(Sale.statut != SaleStatus.ANNULE.value)
        rows = self.session.execute(query.order_by(Sale.unite_numero, Sale.created_at)).scalars()
        return [SaleInfo.from_model(s) for s in rows]

    def list_expenses(self, project_id: UUID) -> list[ExpenseInfo]:
        rows = self.session.execute(
            select(Expense)
            .where(Expense.project_id == project_id)
            .order_by(Expense.created_at, Expense.nom)
        ).scalars()
        return [ExpenseInfo.from_model(e) for e in rows]

    def list_installments(
        self, parent_type: ParentKind | str, parent_id: UUID
    ) -> list[InstallmentInfo]:
        binding = binding_for(parent_type)
        return self._installments(binding, parent_id)

    def get_installment(self, parent_type: ParentKind | str, installment_id: UUID) -> InstallmentInfo:
        binding = binding_for(parent_type)
        row = self.session.get(binding.installment_model, installment_id)
        if row is None:
            raise InstallmentNotFoundError(installment_id)
        return InstallmentInfo.from_model(row, binding.kind, binding.installment_parent_id(row))

    def get_sale_statement(self, sale_id: UUID) -> ParentStatement:
        return ParentStatement(
            parent=self.get_sale(sale_id),
            installments=tuple(self._installments(SALE_BINDING, sale_id)),
            checks=tuple(self._checks(SALE_BINDING, sale_id)),
        )

    def get_expense_statement(self, expense_id: UUID) -> ParentStatement:
        return ParentStatement(
            parent=self.get_expense(expense_id),
            installments=tuple(self._installments(EXPENSE_BINDING, expense_id)),
            checks=tuple(self._checks(EXPENSE_BINDING, expense_id)),
        )

    def _parent(self, binding: ParentBinding, parent_id: UUID):
        parent = self.session.get(binding.parent_model, parent_id)
        if parent is None:
            raise binding.not_found(parent_id)
        return parent

    def _installments(self, binding: ParentBinding, parent_id: UUID) -> list[InstallmentInfo]:
        model = binding.installment_model
        rows = self.session.execute(
            select(model)
            .where(binding.installment_fk_column() == parent_id)
            .order_by(model.numero_echeance)
        ).scalars()
        return [InstallmentInfo.from_model(r, binding.kind, parent_id) for r in rows]

    def _checks(self, binding: ParentBinding, parent_id: UUID) -> list[CheckInfo]:
        rows = self.session.execute(
            select(Check)
            .where(binding.check_parent_column() == parent_id)
            .order_by(Check.date_emission, Check.numero_cheque)
        ).scalars()
        return [CheckInfo.from_model(c) for c in rows]
