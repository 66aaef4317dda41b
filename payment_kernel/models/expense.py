"""
Module: payment_kernel.models.expense
Responsibility: ORM persistence for project expenses (supplier invoices,
    works, fees) and their derived payment aggregate.
Architecture position: Kernel > Models.  Imports db/ and domain/dtos only.

Invariants enforced:
    - montant_total > 0.
    - montant_total_paye / montant_restant / statut_paiement are written only
      by AggregateRecalculator, in the transaction of the payment mutation.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.domain.dtos import PaymentStatus


class Expense(TrackedBase):
    """A project expense paid in one or more installments."""

    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("montant_total > 0", name="ck_expense_total_positive"),
        Index("idx_expense_project", "project_id"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=False,
    )

    nom: Mapped[str] = mapped_column(String(255), nullable=False)

    # Contractual total
    montant_total: Mapped[Decimal] = mapped_column(nullable=False)

    # Declared breakdown of the contractual total, when known
    montant_declare: Mapped[Decimal | None] = mapped_column(nullable=True)
    montant_non_declare: Mapped[Decimal | None] = mapped_column(nullable=True)

    mode_paiement: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("payment_methods.code"),
        nullable=True,
    )

    # Derived aggregate
    montant_total_paye: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    montant_restant: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    statut_paiement: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentStatus.NON_PAYE.value
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Expense {self.nom} {self.montant_total}>"

    @property
    def contractual_total(self) -> Decimal:
        return self.montant_total
