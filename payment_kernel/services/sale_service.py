"""
SaleService -- sale lifecycle around the installment ledger.

Responsibility:
    Creates sales behind the capacity gate, records the initial advance as
    installment #1 ("Avance initiale"), cancels sales and changes their
    contractual price.

Architecture position:
    Kernel > Services.  Flush-only.  Lock order: project, then sale.

Invariants enforced:
    - A category never holds more active sales than its capacity
      (CapacityExceededError under the project lock).
    - One active sale per unit number and project (UnitAlreadySoldError).
    - The price never drops below what has already been paid.
    - avance_* mirror installment #1.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payment_kernel.db.types import round_money, to_money
from payment_kernel.domain.aggregates import exceeds_contract
from payment_kernel.domain.dtos import (
    ParentAggregate,
    PaymentInput,
    PaymentResult,
    PaymentStatus,
    PropertyType,
    SaleStatus,
)
from payment_kernel.exceptions import (
    NonPositiveAmountError,
    OverAllocationError,
    SaleNotFoundError,
    SaleStateError,
    UnitAlreadySoldError,
    ValidationError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Sale
from payment_kernel.services.base import BaseService
from payment_kernel.services.capacity_validator import CapacityValidator
from payment_kernel.services.installment_ledger import InstallmentLedger
from payment_kernel.services.parents import SALE_BINDING, lock_parent, lock_project

logger = get_logger("services.sale")

INITIAL_ADVANCE_LABEL = "Avance initiale"


class SaleService(BaseService):

    def __init__(
        self,
        session,
        config=None,
        ledger: InstallmentLedger | None = None,
        validator: CapacityValidator | None = None,
    ):
        super().__init__(session, config)
        self.ledger = ledger or InstallmentLedger(session, self.config)
        self.validator = validator or CapacityValidator(session, self.config)

    def create_sale(
        self,
        project_id: UUID,
        actor_id: UUID,
        type_propriete: str,
        unite_numero: str,
        client_nom: str,
        prix_total: Decimal,
        client_telephone: str | None = None,
        client_email: str | None = None,
        client_adresse: str | None = None,
        surface: Decimal | None = None,
        mode_paiement: str | None = None,
        description: str | None = None,
        advance: PaymentInput | None = None,
    ) -> tuple[Sale, PaymentResult | None]:
        """
        Create a sale and, when ``advance`` is given, its paid installment #1.

        Returns:
            (sale row, result of the advance payment or None)
        """
        try:
            category = PropertyType(type_propriete).value
        except ValueError:
            raise ValidationError(f"Unknown type_propriete: {type_propriete!r}") from None
        price = round_money(to_money(prix_total, "prix_total"), self.config.money_decimal_places)
        if price <= 0:
            raise NonPositiveAmountError("prix_total", price)
        if not unite_numero or not str(unite_numero).strip():
            raise ValidationError("unite_numero is required")
        if not client_nom or not client_nom.strip():
            raise ValidationError("client_nom is required")
        unit = str(unite_numero).strip()
        if mode_paiement is not None:
            self.ledger.resolve_method(mode_paiement)

        project = lock_project(self.session, project_id)
        self.validator.ensure_unit_available(project, category)

        holder = self.session.execute(
            select(Sale.id).where(
                Sale.project_id == project.id,
                Sale.unite_numero == unit,
                Sale.statut != SaleStatus.ANNULE.value,
            )
        ).scalar_one_or_none()
        if holder is not None:
            raise UnitAlreadySoldError(str(project.id), unit, str(holder))

        sale = Sale(
            project_id=project.id,
            type_propriete=category,
            unite_numero=unit,
            client_nom=client_nom.strip(),
            client_telephone=client_telephone,
            client_email=client_email,
            client_adresse=client_adresse,
            surface=None if surface is None else round_money(to_money(surface, "surface")),
            prix_total=price,
            mode_paiement=mode_paiement or (advance.method if advance else None),
            statut=SaleStatus.EN_COURS.value,
            montant_total_paye=Decimal("0"),
            montant_restant=price,
            statut_paiement=PaymentStatus.NON_PAYE.value,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(sale)
        self.session.flush()

        logger.info(
            "sale_created",
            extra={
                "sale_id": str(sale.id),
                "project_id": str(project.id),
                "type_propriete": category,
                "unite_numero": unit,
                "prix_total": price,
            },
        )

        if advance is None:
            return sale, None

        advance = replace(advance, description=advance.description or INITIAL_ADVANCE_LABEL)
        result = self.ledger.add_payment(
            SALE_BINDING,
            sale.id,
            advance,
            actor_id,
            sequence_no=1,
            initial_advance=True,
        )
        return sale, result

    def cancel_sale(self, sale_id: UUID, actor_id: UUID) -> Sale:
        """
        en_cours / termine -> annule.

        Installments and checks are left as they are; the unit and its
        capacity slot are freed.
        """
        project_id = self.session.execute(
            select(Sale.project_id).where(Sale.id == sale_id)
        ).scalar_one_or_none()
        if project_id is None:
            raise SaleNotFoundError(sale_id)
        lock_project(self.session, project_id)
        sale = lock_parent(self.session, SALE_BINDING, sale_id)

        if sale.statut == SaleStatus.ANNULE:
            raise SaleStateError(str(sale.id), sale.statut, "cancel")

        previous = sale.statut
        sale.statut = SaleStatus.ANNULE.value
        sale.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "sale_cancelled",
            extra={"sale_id": str(sale.id), "previous_status": previous},
        )
        return sale

    def update_sale_price(self, sale_id: UUID, prix_total: Decimal, actor_id: UUID) -> ParentAggregate:
        """Change the contractual price; never below the total already paid."""
        price = round_money(to_money(prix_total, "prix_total"), self.config.money_decimal_places)
        if price <= 0:
            raise NonPositiveAmountError("prix_total", price)

        recalculator = self.ledger.recalculator
        sale = lock_parent(self.session, SALE_BINDING, sale_id)
        if sale.statut == SaleStatus.ANNULE:
            raise SaleStateError(str(sale.id), sale.statut, "change the price")

        current = recalculator.compute(SALE_BINDING, sale)
        if exceeds_contract(current.total_paid, price):
            raise OverAllocationError(
                SALE_BINDING.kind.value,
                str(sale.id),
                price,
                current.total_paid,
                current.total_paid,
            )

        previous = sale.prix_total
        sale.prix_total = price
        aggregate = recalculator.recompute(SALE_BINDING, sale, actor_id)

        logger.info(
            "sale_price_updated",
            extra={"sale_id": str(sale.id), "from_price": previous, "to_price": price},
        )
        return aggregate
