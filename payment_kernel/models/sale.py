"""
Module: payment_kernel.models.sale
Responsibility: ORM persistence for unit sales, including the derived
    aggregate (montant_total_paye, montant_restant, statut_paiement).
Architecture position: Kernel > Models.  Imports db/ and domain/dtos only.

Invariants enforced:
    - The aggregate columns always equal the aggregate recomputed from the
      sale's installments; they are written only by AggregateRecalculator,
      inside the transaction of the installment mutation.
    - sum(active installment contributions) <= prix_total.
    - avance_* mirror the initial-advance installment.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase, UUIDString
from payment_kernel.domain.dtos import PaymentStatus, SaleStatus


class Sale(TrackedBase):
    """Sale of one unit (apartment, garage or lot) of a project."""

    __tablename__ = "sales"

    __table_args__ = (
        CheckConstraint("prix_total > 0", name="ck_sale_price_positive"),
        Index("idx_sale_project", "project_id"),
        Index("idx_sale_project_unit", "project_id", "unite_numero"),
        Index("idx_sale_status", "statut"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=False,
    )

    type_propriete: Mapped[str] = mapped_column(String(20), nullable=False)

    unite_numero: Mapped[str] = mapped_column(String(50), nullable=False)

    # Buyer
    client_nom: Mapped[str] = mapped_column(String(255), nullable=False)
    client_telephone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_adresse: Mapped[str | None] = mapped_column(Text, nullable=True)

    surface: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Contractual total
    prix_total: Mapped[Decimal] = mapped_column(nullable=False)

    # Initial advance breakdown
    avance_declare: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    avance_non_declare: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    avance_espece: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    avance_cheque: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    mode_paiement: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("payment_methods.code"),
        nullable=True,
    )

    statut: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SaleStatus.EN_COURS.value
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
        return f"<Sale {self.unite_numero} project={self.project_id} {self.statut}>"

    @property
    def is_active(self) -> bool:
        return self.statut != SaleStatus.ANNULE

    @property
    def contractual_total(self) -> Decimal:
        return self.prix_total
