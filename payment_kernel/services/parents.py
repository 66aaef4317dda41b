"""
Parent bindings and row locking.

Sales and expenses share one installment ledger.  A ``ParentBinding`` names,
for one parent kind, the ORM classes and columns the ledger, the check
tracker and the recalculator work with, so none of them branch on the kind.

Lock order (every writer follows it, so writers cannot deadlock on each
other):

    project -> sale / expense -> installment -> check

All locks are ``SELECT ... FOR UPDATE`` with ``populate_existing`` so the
locked row's attributes, including ``version``, reflect the committed state
at lock time.  On SQLite FOR UPDATE compiles away; the engine's single
writer gives the same serialisation for tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.dtos import CheckType, ParentKind
from payment_kernel.exceptions import (
    ExpenseNotFoundError,
    InstallmentNotFoundError,
    NotFoundError,
    ProjectNotFoundError,
    SaleNotFoundError,
)
from payment_kernel.models import (
    Check,
    Expense,
    ExpensePaymentPlan,
    PaymentPlan,
    Project,
    Sale,
)


@dataclass(frozen=True)
class ParentBinding:
    kind: ParentKind
    parent_model: type
    installment_model: type
    # Installment column pointing at the parent
    installment_fk: str
    # Check columns pointing at the parent and at the installment
    check_parent_fk: str
    check_installment_fk: str
    check_type: CheckType
    not_found: type[NotFoundError]

    def installment_parent_id(self, installment) -> UUID:
        return getattr(installment, self.installment_fk)

    def installment_fk_column(self):
        return getattr(self.installment_model, self.installment_fk)

    def check_installment_column(self):
        return getattr(Check, self.check_installment_fk)

    def check_parent_column(self):
        return getattr(Check, self.check_parent_fk)


SALE_BINDING = ParentBinding(
    kind=ParentKind.SALE,
    parent_model=Sale,
    installment_model=PaymentPlan,
    installment_fk="sale_id",
    check_parent_fk="sale_id",
    check_installment_fk="payment_plan_id",
    check_type=CheckType.RECU,
    not_found=SaleNotFoundError,
)

EXPENSE_BINDING = ParentBinding(
    kind=ParentKind.EXPENSE,
    parent_model=Expense,
    installment_model=ExpensePaymentPlan,
    installment_fk="expense_id",
    check_parent_fk="expense_id",
    check_installment_fk="expense_payment_plan_id",
    check_type=CheckType.DONNE,
    not_found=ExpenseNotFoundError,
)

_BINDINGS = {ParentKind.SALE: SALE_BINDING, ParentKind.EXPENSE: EXPENSE_BINDING}


def binding_for(kind: ParentKind | str) -> ParentBinding:
    """Binding for a parent kind ("sale" or "expense")."""
    try:
        return _BINDINGS[ParentKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown parent type: {kind!r}") from None


def lock_project(session: Session, project_id: UUID) -> Project:
    project = session.execute(
        select(Project)
        .where(Project.id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


def lock_parent(session: Session, binding: ParentBinding, parent_id: UUID):
    """Lock a sale or expense row; NotFound subclass when absent."""
    model = binding.parent_model
    parent = session.execute(
        select(model)
        .where(model.id == parent_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if parent is None:
        raise binding.not_found(parent_id)
    return parent


def lock_installment(session: Session, binding: ParentBinding, installment_id: UUID):
    """
    Lock an installment and its parent, parent first.

    Returns:
        (parent, installment), both locked.
    """
    model = binding.installment_model
    parent_id = session.execute(
        select(binding.installment_fk_column()).where(model.id == installment_id)
    ).scalar_one_or_none()
    if parent_id is None:
        raise InstallmentNotFoundError(installment_id)

    parent = lock_parent(session, binding, parent_id)
    installment = session.execute(
        select(model)
        .where(model.id == installment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if installment is None:
        # Deleted between the lookup and the lock
        raise InstallmentNotFoundError(installment_id)
    return parent, installment
