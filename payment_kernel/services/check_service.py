"""
CheckService -- check lifecycle tracker.

Responsibility:
    Issues checks (always ``emis``), moves them to ``encaisse`` or ``annule``
    and maintains their weak link to the payment that produced them.

Architecture position:
    Kernel > Services.  Flush-only.  Called by the installment ledger (checks
    carried by a payment) and by the command facade (standalone check
    commands).  When a check is linked to a sale or expense, the caller locks
    that parent before calling any method here.

Invariants enforced:
    - Check numbers are unique per issuer, cancelled ones included.
      Concurrent issuers of the same number race on the unique index; the
      loser gets DuplicateCheckNumberError, not a storage error.
    - Transitions: emis -> encaisse, emis -> annule.  Nothing leaves
      encaisse or annule.
    - A check is never deleted, and never deleted with its payment.

Link policy when the originating payment is cancelled or re-recorded:
    - ``emis`` checks are cancelled and their link marked stale;
    - ``encaisse`` checks keep their status, only the link is marked stale;
    - already ``annule`` checks get a stale link so they stop counting as
      bounced against the installment.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from payment_kernel.db.types import round_money
from payment_kernel.domain.dtos import CheckInput, CheckStatus, CheckType
from payment_kernel.exceptions import (
    CheckNotFoundError,
    DuplicateCheckNumberError,
    InvalidCheckTransitionError,
    InvalidDateError,
    NonPositiveAmountError,
    ValidationError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Check
from payment_kernel.services.base import BaseService
from payment_kernel.services.parents import (
    EXPENSE_BINDING,
    SALE_BINDING,
    ParentBinding,
)

logger = get_logger("services.check")


def issuer_key(nom_emetteur: str | None) -> str | None:
    if nom_emetteur is None:
        return None
    return nom_emetteur.strip() or None


class CheckService(BaseService):
    """Flush-only owner of ``checks`` rows."""

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def find_by_number(self, numero_cheque: str, nom_emetteur: str | None) -> Check | None:
        issuer = issuer_key(nom_emetteur)
        issuer_clause = Check.nom_emetteur.is_(None) if issuer is None else Check.nom_emetteur == issuer
        return self.session.execute(
            select(Check).where(Check.numero_cheque == numero_cheque.strip(), issuer_clause)
        ).scalar_one_or_none()

    def validate_inputs(self, checks: Iterable[CheckInput]) -> None:
        """
        Reject invalid or already used check sub-objects before any write.

        Also catches the same number twice within ``checks``.
        """
        seen: set[tuple[str | None, str]] = set()
        for item in checks:
            if item.montant is None or item.montant <= 0:
                raise NonPositiveAmountError("montant", item.montant)
            if not item.numero_cheque or not item.numero_cheque.strip():
                raise ValidationError("numero_cheque is required")
            if item.date_encaissement is not None and item.date_encaissement < item.date_emission:
                raise InvalidDateError(
                    "date_encaissement", item.date_encaissement, "before date_emission"
                )
            key = (issuer_key(item.nom_emetteur), item.numero_cheque.strip())
            if key in seen:
                raise DuplicateCheckNumberError(key[1], key[0], "same request")
            seen.add(key)
            existing = self.find_by_number(item.numero_cheque, item.nom_emetteur)
            if existing is not None:
                raise DuplicateCheckNumberError(key[1], key[0], str(existing.id))

    def issue(
        self,
        item: CheckInput,
        *,
        check_type: CheckType,
        actor_id: UUID,
        project_id: UUID | None = None,
        sale_id: UUID | None = None,
        expense_id: UUID | None = None,
        payment_plan_id: UUID | None = None,
        expense_payment_plan_id: UUID | None = None,
    ) -> Check:
        """Create a check in ``emis``."""
        self.validate_inputs([item])

        beneficiary = item.nom_beneficiaire
        if beneficiary is None and check_type == CheckType.RECU:
            beneficiary = self.config.default_check_beneficiary

        check = Check(
            type_cheque=check_type.value,
            numero_cheque=item.numero_cheque.strip(),
            montant=round_money(item.montant, self.config.money_decimal_places),
            statut=CheckStatus.EMIS.value,
            date_emission=item.date_emission,
            date_encaissement=item.date_encaissement,
            nom_emetteur=issuer_key(item.nom_emetteur),
            nom_beneficiaire=beneficiary,
            facture_recue=item.facture_recue,
            description=item.description,
            project_id=project_id,
            sale_id=sale_id,
            expense_id=expense_id,
            payment_plan_id=payment_plan_id,
            expense_payment_plan_id=expense_payment_plan_id,
            link_stale=False,
            created_by_id=actor_id,
        )
        # A lost race on the number rolls back this insert only
        savepoint = self.session.begin_nested()
        try:
            self.session.add(check)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = self.find_by_number(check.numero_cheque, check.nom_emetteur)
            if existing is None:
                raise
            logger.warning(
                "check_number_race_lost",
                extra={"numero_cheque": check.numero_cheque, "existing_check_id": str(existing.id)},
            )
            raise DuplicateCheckNumberError(
                check.numero_cheque, check.nom_emetteur, str(existing.id)
            ) from None

        logger.info(
            "check_issued",
            extra={
                "check_id": str(check.id),
                "numero_cheque": check.numero_cheque,
                "type_cheque": check.type_cheque,
                "montant": check.montant,
            },
        )
        return check

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def get(self, check_id: UUID) -> Check:
        check = self.session.get(Check, check_id)
        if check is None:
            raise CheckNotFoundError(check_id)
        return check

    def lock(self, check_id: UUID) -> Check:
        check = self.session.execute(
            select(Check)
            .where(Check.id == check_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if check is None:
            raise CheckNotFoundError(check_id)
        return check

    def clear(self, check_id: UUID, clearing_date: date, actor_id: UUID) -> Check:
        """emis -> encaisse, on or after the issue date."""
        check = self.lock(check_id)
        if check.statut != CheckStatus.EMIS:
            raise InvalidCheckTransitionError(str(check.id), check.statut, CheckStatus.ENCAISSE.value)
        if clearing_date < check.date_emission:
            raise InvalidDateError("date_encaissement", clearing_date, "before date_emission")

        check.statut = CheckStatus.ENCAISSE.value
        check.date_encaissement = clearing_date
        check.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "check_cleared",
            extra={"check_id": str(check.id), "date_encaissement": clearing_date},
        )
        return check

    def cancel(self, check_id: UUID, actor_id: UUID) -> Check:
        """emis -> annule."""
        check = self.lock(check_id)
        if check.statut != CheckStatus.EMIS:
            raise InvalidCheckTransitionError(str(check.id), check.statut, CheckStatus.ANNULE.value)

        check.statut = CheckStatus.ANNULE.value
        check.updated_by_id = actor_id
        self.session.flush()

        logger.info("check_cancelled", extra={"check_id": str(check.id)})
        return check

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def live_link_of(self, check_id: UUID) -> tuple[ParentBinding, UUID] | None:
        """
        Parent that a check currently counts against, read without locks.

        Used to take the parent lock before the check lock.
        """
        check = self.session.execute(select(Check).where(Check.id == check_id)).scalar_one_or_none()
        if check is None:
            raise CheckNotFoundError(check_id)
        if check.sale_id is not None:
            return SALE_BINDING, check.sale_id
        if check.expense_id is not None:
            return EXPENSE_BINDING, check.expense_id
        return None

    def linked_checks(self, binding: ParentBinding, installment_id: UUID) -> list[Check]:
        """Checks whose live link points at the installment."""
        return list(
            self.session.execute(
                select(Check)
                .where(
                    binding.check_installment_column() == installment_id,
                    Check.link_stale.is_(False),
                )
                .with_for_update()
                .order_by(Check.date_emission, Check.numero_cheque)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def supersede(self, checks: Iterable[Check], actor_id: UUID, reason: str) -> list[Check]:
        """
        Detach checks from a payment that was cancelled or re-recorded.

        Pending checks are cancelled; cleared ones keep their history.
        """
        superseded = []
        for check in checks:
            if check.statut == CheckStatus.EMIS:
                check.statut = CheckStatus.ANNULE.value
            check.link_stale = True
            check.updated_by_id = actor_id
            superseded.append(check)
        if superseded:
            self.session.flush()
            logger.info(
                "checks_superseded",
                extra={
                    "reason": reason,
                    "check_ids": [str(c.id) for c in superseded],
                },
            )
        return superseded

    @staticmethod
    def total(checks: Iterable[Check | CheckInput]) -> Decimal:
        return sum((c.montant for c in checks), Decimal("0"))
