"""
Module: payment_kernel.models.check
Responsibility: ORM persistence for checks received from buyers and given to
    suppliers.
Architecture position: Kernel > Models.  Imports db/ and domain/dtos only.

Invariants enforced:
    - (nom_emetteur, numero_cheque) is unique (uq_check_issuer_number), and
      numero_cheque alone among checks without issuer
      (uq_check_number_no_issuer); cancelled checks keep their number.
    - Links to project / sale / expense / installment are weak: nullable, ON
      DELETE SET NULL.  Deleting a payment never deletes its check.
    - ``link_stale`` is set when the payment the check was issued for has
      been cancelled or re-recorded; stale links are kept for lookup but no
      longer affect the parent aggregate.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.domain.dtos import CheckStatus


def _weak_link(target: str) -> Mapped[UUID | None]:
    return mapped_column(
        UUIDString(),
        ForeignKey(target, ondelete="SET NULL"),
        nullable=True,
    )


class Check(TrackedBase):
    """A paper check with its own lifecycle (emis -> encaisse | annule)."""

    __tablename__ = "checks"

    __table_args__ = (
        UniqueConstraint("nom_emetteur", "numero_cheque", name="uq_check_issuer_number"),
        # NULL issuers are distinct for the constraint above
        Index(
            "uq_check_number_no_issuer",
            "numero_cheque",
            unique=True,
            postgresql_where=text("nom_emetteur IS NULL"),
            sqlite_where=text("nom_emetteur IS NULL"),
        ),
        CheckConstraint("montant > 0", name="ck_check_amount_positive"),
        Index("idx_check_status", "statut"),
        Index("idx_check_sale", "sale_id"),
        Index("idx_check_expense", "expense_id"),
        Index("idx_check_payment_plan", "payment_plan_id"),
        Index("idx_check_expense_payment_plan", "expense_payment_plan_id"),
    )

    type_cheque: Mapped[str] = mapped_column(String(10), nullable=False)

    numero_cheque: Mapped[str] = mapped_column(String(100), nullable=False)

    montant: Mapped[Decimal] = mapped_column(nullable=False)

    statut: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CheckStatus.EMIS.value
    )

    date_emission: Mapped[date] = mapped_column(Date, nullable=False)

    # Expected date while emis, actual date once encaisse
    date_encaissement: Mapped[date | None] = mapped_column(Date, nullable=True)

    nom_emetteur: Mapped[str | None] = mapped_column(String(255), nullable=True)
    nom_beneficiaire: Mapped[str | None] = mapped_column(String(255), nullable=True)

    facture_recue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Weak references (lookup only)
    project_id: Mapped[UUID | None] = _weak_link("projects.id")
    sale_id: Mapped[UUID | None] = _weak_link("sales.id")
    expense_id: Mapped[UUID | None] = _weak_link("expenses.id")
    payment_plan_id: Mapped[UUID | None] = _weak_link("payment_plans.id")
    expense_payment_plan_id: Mapped[UUID | None] = _weak_link("expense_payment_plans.id")

    link_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Check {self.numero_cheque} {self.montant} {self.statut}>"

    @property
    def is_pending(self) -> bool:
        return self.statut == CheckStatus.EMIS
