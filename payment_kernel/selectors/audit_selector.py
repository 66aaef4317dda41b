"""
Module: payment_kernel.selectors.audit_selector
Responsibility: Consistency audit of stored aggregates and installment rows,
    plus payment statistics.

Architecture position: Kernel > Selectors.  Reuses the recalculator's
    read-only ``compute`` path so the audit and the writers share one
    definition of the aggregate; nothing here writes.

Audit relevance:
    ``audit_parent`` reports two kinds of defects:
      - drift: stored montant_total_paye / montant_restant / statut_paiement
        differ from a recomputation over the committed rows;
      - row violations: a paid row whose declared or leg pair does not sum
        to montant_paye.
    Both are reported, never repaired; ``recompute_aggregate`` on the command
    facade is the repair tool for drift.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payment_kernel.config import ReconciliationConfig
from payment_kernel.domain.dtos import (
    DriftReport,
    InstallmentStatus,
    ParentAggregate,
    ParentKind,
    PaymentStats,
    PaymentStatus,
)
from payment_kernel.domain.money_split import pair_violations
from payment_kernel.selectors.base import BaseSelector
from payment_kernel.services.aggregate_recalculator import AggregateRecalculator
from payment_kernel.services.parents import binding_for


class AuditSelector(BaseSelector):

    def __init__(self, session, config: ReconciliationConfig | None = None):
        super().__init__(session)
        self.config = config or ReconciliationConfig()
        self._recalculator = AggregateRecalculator(session, self.config)

    def audit_parent(self, parent_type: ParentKind | str, parent_id: UUID) -> DriftReport:
        binding = binding_for(parent_type)
        parent = self.session.get(binding.parent_model, parent_id, populate_existing=True)
        if parent is None:
            raise binding.not_found(parent_id)

        stored = ParentAggregate(
            contractual_total=parent.contractual_total,
            total_paid=parent.montant_total_paye,
            remaining=parent.montant_restant,
            status=PaymentStatus(parent.statut_paiement),
        )
        recomputed = self._recalculator.compute(binding, parent)

        violations = []
        for row in self._recalculator.installments(binding, parent.id):
            if row.statut == InstallmentStatus.ANNULE:
                continue
            for problem in pair_violations(
                row.montant_paye,
                row.montant_declare,
                row.montant_non_declare,
                row.montant_espece,
                row.montant_cheque,
                self.config.amount_tolerance,
            ):
                violations.append(f"#{row.numero_echeance}: {problem}")

        return DriftReport(
            parent_type=binding.kind,
            parent_id=parent.id,
            stored=stored,
            recomputed=recomputed,
            row_violations=tuple(violations),
        )

    def audit_project(self, project_id: UUID) -> list[DriftReport]:
        """Audit every sale and expense of a project; only defective ones are returned."""
        reports = []
        for kind in ParentKind:
            binding = binding_for(kind)
            model = binding.parent_model
            ids = self.session.execute(
                select(model.id).where(model.project_id == project_id).order_by(model.created_at)
            ).scalars()
            for parent_id in ids:
                report = self.audit_parent(kind, parent_id)
                if not report.is_consistent:
                    reports.append(report)
        return reports

    def payment_stats(
        self,
        parent_type: ParentKind | str,
        parent_id: UUID | None = None,
        project_id: UUID | None = None,
    ) -> PaymentStats:
        """
        Installment totals for one parent, one project, or everything.

        Cancelled rows are counted by status but excluded from the amounts.
        """
        binding = binding_for(parent_type)
        model = binding.installment_model
        query = select(model)
        if parent_id is not None:
            query = query.where(binding.installment_fk_column() == parent_id)
        if project_id is not None:
            parent_model = binding.parent_model
            query = query.join(
                parent_model, parent_model.id == binding.installment_fk_column()
            ).where(parent_model.project_id == project_id)

        counts: dict[str, int] = defaultdict(int)
        totals = defaultdict(Decimal)
        for row in self.session.execute(query).scalars():
            counts[row.statut] += 1
            if row.statut == InstallmentStatus.ANNULE:
                continue
            totals["planned"] += row.montant_prevu
            totals["paid"] += row.montant_paye
            totals["espece"] += row.montant_espece
            totals["cheque"] += row.montant_cheque
            totals["declare"] += row.montant_declare
            totals["non_declare"] += row.montant_non_declare

        return PaymentStats(
            count_by_status=dict(counts),
            total_planned=totals["planned"],
            total_paid=totals["paid"],
            total_espece=totals["espece"],
            total_cheque=totals["cheque"],
            total_declare=totals["declare"],
            total_non_declare=totals["non_declare"],
        )
