"""
Module: payment_kernel.selectors.check_selector
Responsibility: Check listings and check portfolio statistics.

Filters combine with AND; an omitted filter matches everything.  Statistics
are computed in Python over the filtered rows so SQLite and PostgreSQL give
identical Decimal results.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payment_kernel.domain.dtos import CheckInfo, CheckStats, CheckStatus, CheckType
from payment_kernel.models import Check
from payment_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class CheckFilter:
    type_cheque: CheckType | str | None = None
    statut: CheckStatus | str | None = None
    project_id: UUID | None = None
    sale_id: UUID | None = None
    expense_id: UUID | None = None
    nom_emetteur: str | None = None
    emitted_from: date | None = None
    emitted_to: date | None = None


class CheckSelector(BaseSelector):

    def list_checks(self, filters: CheckFilter | None = None) -> list[CheckInfo]:
        rows = self.session.execute(
            self._query(filters or CheckFilter()).order_by(Check.date_emission, Check.numero_cheque)
        ).scalars()
        return [CheckInfo.from_model(c) for c in rows]

    def pending_checks(self, due_on_or_before: date, filters: CheckFilter | None = None) -> list[CheckInfo]:
        """
        Issued checks expected to clear by ``due_on_or_before``.

        Checks without an expected clearing date are due from their issue
        date.
        """
        due = [
            c
            for c in self.list_checks(filters)
            if c.statut == CheckStatus.EMIS
            and (c.date_encaissement or c.date_emission) <= due_on_or_before
        ]
        return sorted(due, key=lambda c: (c.date_encaissement or c.date_emission, c.numero_cheque))

    def check_stats(self, filters: CheckFilter | None = None) -> CheckStats:
        count_by_status: dict[str, int] = defaultdict(int)
        amount_by_status: dict[str, Decimal] = defaultdict(Decimal)
        count_by_type: dict[str, int] = defaultdict(int)
        amount_by_type: dict[str, Decimal] = defaultdict(Decimal)
        total = Decimal("0")
        count = 0

        for check in self.session.execute(self._query(filters or CheckFilter())).scalars():
            count += 1
            total += check.montant
            count_by_status[check.statut] += 1
            amount_by_status[check.statut] += check.montant
            count_by_type[check.type_cheque] += 1
            amount_by_type[check.type_cheque] += check.montant

        return CheckStats(
            count_by_status=dict(count_by_status),
            amount_by_status=dict(amount_by_status),
            count_by_type=dict(count_by_type),
            amount_by_type=dict(amount_by_type),
            total_count=count,
            total_amount=total,
        )

    @staticmethod
    def _query(filters: CheckFilter):
        query = select(Check)
        if filters.type_cheque is not None:
            query = query.where(Check.type_cheque == CheckType(filters.type_cheque).value)
        if filters.statut is not None:
            query = query.where(Check.statut == CheckStatus(filters.statut).value)
        if filters.project_id is not None:
            query = query.where(Check.project_id == filters.project_id)
        if filters.sale_id is not None:
            query = query.where(Check.sale_id == filters.sale_id)
        if filters.expense_id is not None:
            query = query.where(Check.expense_id == filters.expense_id)
        if filters.nom_emetteur is not None:
            query = query.where(Check.nom_emetteur == filters.nom_emetteur.strip())
        if filters.emitted_from is not None:
            query = query.where(Check.date_emission >= filters.emitted_from)
        if filters.emitted_to is not None:
            query = query.where(Check.date_emission <= filters.emitted_to)
        return query
