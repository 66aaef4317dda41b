"""
Module: payment_kernel.models.expense_payment_plan
Responsibility: ORM persistence for expense installments and ad-hoc expense
    payments (``expense_payment_plans``).
Architecture position: Kernel > Models.

Same shape and invariants as ``payment_plans``; scoped to an expense.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.models.payment_plan import InstallmentColumns, _installment_constraints


class ExpensePaymentPlan(InstallmentColumns, TrackedBase):
    """One scheduled installment or ad-hoc payment of an expense."""

    __tablename__ = "expense_payment_plans"

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "numero_echeance", name="uq_expense_payment_plan_sequence"
        ),
        Index("idx_expense_payment_plan_expense", "expense_id"),
        Index("idx_expense_payment_plan_status", "statut"),
        *_installment_constraints("expense_payment_plan"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
    )

    mode_paiement: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("payment_methods.code"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ExpensePaymentPlan expense={self.expense_id} "
            f"#{self.numero_echeance} {self.statut}>"
        )
