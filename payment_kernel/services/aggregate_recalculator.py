"""
AggregateRecalculator -- derives a parent's stored totals from its rows.

Responsibility:
    Reads every installment of one sale or expense (plus the cancelled checks
    still linked to them), runs the pure aggregate math and writes
    montant_total_paye, montant_restant and statut_paiement back on the
    parent.  For a sale it also moves ``statut`` between en_cours and
    termine.

Architecture position:
    Kernel > Services.  Called by the installment ledger, the check commands
    and the sale/expense services inside the transaction that changed the
    rows, after the parent row has been locked.

Invariants enforced:
    - Stored aggregate == aggregate recomputed from the rows, at every
      commit.
    - Idempotent: running it twice writes the same values.

Failure modes:
    None of its own; storage errors propagate to the command facade.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payment_kernel.db.types import ZERO
from payment_kernel.domain.aggregates import compute_aggregate, contribution, next_sale_status
from payment_kernel.domain.dtos import CheckStatus, ContributionRow, ParentAggregate, ParentKind
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Check
from payment_kernel.services.base import BaseService
from payment_kernel.services.parents import ParentBinding

logger = get_logger("services.aggregate_recalculator")


class AggregateRecalculator(BaseService):
    """Explicit, in-transaction replacement for parent aggregate triggers."""

    def installments(self, binding: ParentBinding, parent_id: UUID) -> list:
        model = binding.installment_model
        return list(
            self.session.execute(
                select(model)
                .where(binding.installment_fk_column() == parent_id)
                .order_by(model.numero_echeance)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def bounced_totals(self, binding: ParentBinding, installment_ids: list[UUID]) -> dict[UUID, Decimal]:
        """Cancelled, still-linked check amounts per installment."""
        if not installment_ids:
            return {}
        link = binding.check_installment_column()
        rows = self.session.execute(
            select(link, Check.montant).where(
                link.in_(installment_ids),
                Check.statut == CheckStatus.ANNULE.value,
                Check.link_stale.is_(False),
            )
        ).all()
        totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for installment_id, montant in rows:
            totals[installment_id] += montant
        return dict(totals)

    def contributions(self, binding: ParentBinding, parent_id: UUID) -> dict[UUID, ContributionRow]:
        rows = self.installments(binding, parent_id)
        bounced = self.bounced_totals(binding, [r.id for r in rows])
        return {
            r.id: ContributionRow(
                statut=r.statut,
                montant_paye=r.montant_paye,
                bounced_check_total=bounced.get(r.id, ZERO),
            )
            for r in rows
        }

    def compute(self, binding: ParentBinding, parent) -> ParentAggregate:
        """Aggregate of the parent as the session currently sees it. No write."""
        return compute_aggregate(
            parent.contractual_total,
            self.contributions(binding, parent.id).values(),
            self.config.amount_tolerance,
        )

    def contribution_of(self, binding: ParentBinding, installment) -> Decimal:
        bounced = self.bounced_totals(binding, [installment.id]).get(installment.id, ZERO)
        return contribution(
            ContributionRow(
                statut=installment.statut,
                montant_paye=installment.montant_paye,
                bounced_check_total=bounced,
            )
        )

    def recompute(self, binding: ParentBinding, parent, actor_id: UUID | None = None) -> ParentAggregate:
        """
        Recompute and store the parent aggregate.

        The caller holds the parent row lock.
        """
        aggregate = self.compute(binding, parent)

        parent.montant_total_paye = aggregate.total_paid
        parent.montant_restant = aggregate.remaining
        parent.statut_paiement = aggregate.status.value

        if binding.kind == ParentKind.SALE:
            new_status = next_sale_status(parent.statut, aggregate.status)
            if parent.statut != new_status:
                logger.info(
                    "sale_status_changed",
                    extra={
                        "sale_id": str(parent.id),
                        "from_status": parent.statut,
                        "to_status": new_status.value,
                    },
                )
                parent.statut = new_status.value

        if actor_id is not None:
            parent.updated_by_id = actor_id
        self.session.flush()

        logger.debug(
            "aggregate_recomputed",
            extra={
                "parent_type": binding.kind.value,
                "parent_id": str(parent.id),
                "total_paid": aggregate.total_paid,
                "remaining": aggregate.remaining,
                "statut_paiement": aggregate.status.value,
            },
        )
        return aggregate
