"""
Module: payment_kernel.models.payment_plan
Responsibility: ORM persistence for sale installments (``payment_plans``) and
    the column set shared with expense installments.
Architecture position: Kernel > Models.  Imports db/ and domain/dtos (status
    vocabulary) only.

Invariants enforced:
    - numero_echeance is unique per sale (uq_payment_plan_sequence) and > 0.
    - montant_declare + montant_non_declare == montant_paye and
      montant_espece + montant_cheque == montant_paye for every paid row.
      Validated by the money split before the row is written; the check
      constraints below catch negative legs only.
    - Cancelled rows keep their amounts (audit trail); the aggregate ignores
      them by status.

Audit relevance:
    Rows are never renumbered.  A payment that has been recorded is
    corrected by edit or cancel, never by delete.
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
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.domain.dtos import InstallmentStatus


class InstallmentColumns:
    """Columns shared by sale and expense installments."""

    numero_echeance: Mapped[int] = mapped_column(Integer, nullable=False)

    # Schedule
    montant_prevu: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    date_prevue: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Settlement
    montant_paye: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    montant_declare: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    montant_non_declare: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    montant_espece: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    montant_cheque: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    date_paiement: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    statut: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InstallmentStatus.EN_ATTENTE.value,
    )

    @property
    def is_cancelled(self) -> bool:
        return self.statut == InstallmentStatus.ANNULE

    @property
    def is_paid(self) -> bool:
        return self.statut == InstallmentStatus.PAYE

    @property
    def has_payment(self) -> bool:
        return self.montant_paye > 0


def _installment_constraints(prefix: str) -> tuple:
    return (
        CheckConstraint("numero_echeance > 0", name=f"ck_{prefix}_sequence_positive"),
        CheckConstraint(
            "montant_paye >= 0 AND montant_declare >= 0 AND montant_non_declare >= 0 "
            "AND montant_espece >= 0 AND montant_cheque >= 0",
            name=f"ck_{prefix}_amounts_non_negative",
        ),
    )


class PaymentPlan(InstallmentColumns, TrackedBase):
    """
    One installment of a sale.

    ``is_initial_advance`` marks the "Avance initiale" row created with the
    sale; the sale's avance_* columns mirror it.
    """

    __tablename__ = "payment_plans"

    __table_args__ = (
        UniqueConstraint("sale_id", "numero_echeance", name="uq_payment_plan_sequence"),
        Index("idx_payment_plan_sale", "sale_id"),
        Index("idx_payment_plan_status", "statut"),
        *_installment_constraints("payment_plan"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
    )

    mode_paiement: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("payment_methods.code"),
        nullable=True,
    )

    is_initial_advance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<PaymentPlan sale={self.sale_id} #{self.numero_echeance} {self.statut}>"
