"""
InstallmentLedger -- ordered installments of one sale or expense.

Responsibility:
    Creates, pays, edits, cancels, reschedules and deletes installment rows,
    and finishes every mutation by recomputing the parent aggregate.  Sale
    installments (``payment_plans``) and expense installments
    (``expense_payment_plans``) go through the same code, selected by a
    ``ParentBinding``.

Architecture position:
    Kernel > Services.  Flush-only; ``PaymentCommandService`` owns the
    transaction.  Uses the money split (pure), the check tracker and the
    aggregate recalculator.

Invariants enforced:
    - numero_echeance is positive and unique per parent; rows are never
      renumbered.
    - Every paid row satisfies declare + non_declare == paye and
      espece + cheque == paye (within tolerance).
    - The parent's total paid never exceeds its contractual total
      (OverAllocationError, checked under the parent row lock).
    - Cancelled rows keep their amounts and stay readable; only their
      contribution disappears.
    - Every mutation recomputes the parent aggregate before returning.

Failure modes:
    - ValidationError subclasses before any write (split, amounts, sequence,
      check numbers, unknown method).
    - OverAllocationError with the current and attempted totals.
    - InstallmentStateError / SaleStateError for operations the current
      status does not allow.
    - InstallmentNotFoundError / SaleNotFoundError / ExpenseNotFoundError.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from payment_kernel.config import ReconciliationConfig
from payment_kernel.db.types import ZERO, round_money, to_money
from payment_kernel.domain.aggregates import exceeds_contract, projected_total
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.dtos import (
    CheckInfo,
    CheckInput,
    CheckStatus,
    InstallmentInfo,
    InstallmentStatus,
    ParentKind,
    PaymentInput,
    PaymentMethodSpec,
    PaymentResult,
    SaleStatus,
    SplitResult,
)
from payment_kernel.domain.money_split import LEG_PAIR, split_payment
from payment_kernel.exceptions import (
    CheckAmountMismatchError,
    DuplicateSequenceError,
    InstallmentStateError,
    InvalidSequenceNumberError,
    InvalidSplitError,
    MissingSplitError,
    NonPositiveAmountError,
    OverAllocationError,
    SaleStateError,
    UnknownPaymentMethodError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models import Check, PaymentMethod
from payment_kernel.services.aggregate_recalculator import AggregateRecalculator
from payment_kernel.services.base import BaseService
from payment_kernel.services.check_service import CheckService, issuer_key
from payment_kernel.services.parents import (
    ParentBinding,
    lock_installment,
    lock_parent,
)

logger = get_logger("services.installment_ledger")

_PAYABLE = (InstallmentStatus.EN_ATTENTE, InstallmentStatus.EN_RETARD)


class InstallmentLedger(BaseService):
    """Flush-only owner of installment rows."""

    def __init__(
        self,
        session,
        config: ReconciliationConfig | None = None,
        clock: Clock | None = None,
        checks: CheckService | None = None,
        recalculator: AggregateRecalculator | None = None,
    ):
        super().__init__(session, config)
        self.clock = clock or SystemClock()
        self.checks = checks or CheckService(session, self.config)
        self.recalculator = recalculator or AggregateRecalculator(session, self.config)

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    def create_installment(
        self,
        binding: ParentBinding,
        parent_id: UUID,
        sequence_no: int,
        planned_amount: Decimal,
        actor_id: UUID,
        planned_date: date | None = None,
        description: str | None = None,
    ) -> InstallmentInfo:
        """Add an unpaid installment to the parent's schedule."""
        planned = self._positive(planned_amount, "montant_prevu")
        parent = lock_parent(self.session, binding, parent_id)
        self._ensure_accepts_payments(binding, parent, "schedule installments")
        self._validate_sequence(binding, parent.id, sequence_no)

        installment = binding.installment_model(
            numero_echeance=sequence_no,
            montant_prevu=planned,
            date_prevue=planned_date,
            description=description,
            statut=InstallmentStatus.EN_ATTENTE.value,
            created_by_id=actor_id,
        )
        setattr(installment, binding.installment_fk, parent.id)
        self.session.add(installment)
        self.session.flush()

        logger.info(
            "installment_created",
            extra={
                "installment_id": str(installment.id),
                "numero_echeance": sequence_no,
                "montant_prevu": planned,
            },
        )
        return InstallmentInfo.from_model(installment, binding.kind, parent.id)

    def reschedule_installment(
        self,
        binding: ParentBinding,
        installment_id: UUID,
        actor_id: UUID,
        planned_amount: Decimal | None = None,
        planned_date: date | None = None,
        sequence_no: int | None = None,
        description: str | None = None,
    ) -> InstallmentInfo:
        """Change schedule metadata; amounts already paid are untouched."""
        parent, installment = lock_installment(self.session, binding, installment_id)
        if installment.statut == InstallmentStatus.ANNULE:
            raise InstallmentStateError(str(installment.id), installment.statut, "reschedule")

        if planned_amount is not None:
            installment.montant_prevu = self._positive(planned_amount, "montant_prevu")
        if sequence_no is not None and sequence_no != installment.numero_echeance:
            self._validate_sequence(binding, parent.id, sequence_no, exclude_id=installment.id)
            installment.numero_echeance = sequence_no
        if planned_date is not None:
            installment.date_prevue = planned_date
            if (
                installment.statut == InstallmentStatus.EN_RETARD
                and planned_date >= self.clock.today()
            ):
                installment.statut = InstallmentStatus.EN_ATTENTE.value
        if description is not None:
            installment.description = description
        installment.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "installment_rescheduled",
            extra={
                "installment_id": str(installment.id),
                "numero_echeance": installment.numero_echeance,
                "date_prevue": installment.date_prevue,
            },
        )
        return InstallmentInfo.from_model(installment, binding.kind, parent.id)

    def delete_installment(
        self, binding: ParentBinding, installment_id: UUID, actor_id: UUID
    ) -> None:
        """
        Remove a schedule row that never received a payment.

        Paid or cancelled rows are audit trail: cancel them instead.
        """
        parent, installment = lock_installment(self.session, binding, installment_id)
        if installment.has_payment or installment.statut in (
            InstallmentStatus.PAYE,
            InstallmentStatus.ANNULE,
        ):
            raise InstallmentStateError(str(installment.id), installment.statut, "delete")

        numero = installment.numero_echeance
        self.session.delete(installment)
        self.session.flush()
        self.recalculator.recompute(binding, parent, actor_id)

        logger.info(
            "installment_deleted",
            extra={"installment_id": str(installment_id), "numero_echeance": numero},
        )

    def refresh_overdue(
        self,
        binding: ParentBinding,
        parent_id: UUID,
        actor_id: UUID,
        as_of: date | None = None,
    ) -> int:
        """
        Flag unpaid installments whose planned date has passed.

        en_attente -> en_retard when date_prevue < as_of, and back when an
        en_retard row has been rescheduled to as_of or later.

        Returns:
            Number of rows whose status changed.
        """
        as_of = as_of or self.clock.today()
        parent = lock_parent(self.session, binding, parent_id)
        changed = 0
        for installment in self.recalculator.installments(binding, parent.id):
            due = installment.date_prevue
            if installment.statut == InstallmentStatus.EN_ATTENTE and due is not None and due < as_of:
                installment.statut = InstallmentStatus.EN_RETARD.value
            elif installment.statut == InstallmentStatus.EN_RETARD and (due is None or due >= as_of):
                installment.statut = InstallmentStatus.EN_ATTENTE.value
            else:
                continue
            installment.updated_by_id = actor_id
            changed += 1
        self.session.flush()

        logger.info(
            "overdue_refreshed",
            extra={"as_of": as_of, "changed": changed},
        )
        return changed

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        binding: ParentBinding,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentResult:
        """Pay a scheduled installment (en_attente or en_retard)."""
        parent, installment = lock_installment(self.session, binding, installment_id)
        self._ensure_accepts_payments(binding, parent, "record payments")
        if installment.statut not in _PAYABLE:
            raise InstallmentStateError(
                str(installment.id), installment.statut, "record a payment"
            )

        split = self._prepare_payment(binding, parent, installment, payment)
        issued = self._write_payment(binding, parent, installment, split, payment, actor_id)
        aggregate = self.recalculator.recompute(binding, parent, actor_id)

        logger.info(
            "payment_recorded",
            extra=self._payment_log(installment, split, aggregate.total_paid),
        )
        return self._result(binding, parent, installment, aggregate, issued)

    def add_payment(
        self,
        binding: ParentBinding,
        parent_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
        sequence_no: int | None = None,
        planned_date: date | None = None,
        initial_advance: bool = False,
    ) -> PaymentResult:
        """
        Create and pay an installment in one step.

        Without ``sequence_no`` the row takes max(numero_echeance) + 1,
        computed under the parent lock.
        """
        parent = lock_parent(self.session, binding, parent_id)
        self._ensure_accepts_payments(binding, parent, "record payments")
        if sequence_no is None:
            sequence_no = self._next_sequence(binding, parent.id)
        self._validate_sequence(binding, parent.id, sequence_no)

        split = self._prepare_payment(binding, parent, None, payment)

        installment = binding.installment_model(
            numero_echeance=sequence_no,
            montant_prevu=split.amount,
            date_prevue=planned_date or payment.payment_date or self.clock.today(),
            statut=InstallmentStatus.EN_ATTENTE.value,
            created_by_id=actor_id,
        )
        setattr(installment, binding.installment_fk, parent.id)
        if initial_advance:
            installment.is_initial_advance = True
        self.session.add(installment)
        self.session.flush()

        issued = self._write_payment(binding, parent, installment, split, payment, actor_id)
        aggregate = self.recalculator.recompute(binding, parent, actor_id)

        logger.info(
            "payment_added",
            extra=self._payment_log(installment, split, aggregate.total_paid),
        )
        return self._result(binding, parent, installment, aggregate, issued)

    def edit_payment(
        self,
        binding: ParentBinding,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentResult:
        """
        Re-record the payment of a paid installment.

        Check sub-objects that repeat a linked check (same issuer, number
        and amount) keep that check.  Without check sub-objects, the linked
        checks are kept when the new check leg still equals their total.
        Every other linked check is superseded (see CheckService) and the
        remaining sub-objects are issued as new checks.
        """
        parent, installment = lock_installment(self.session, binding, installment_id)
        self._ensure_accepts_payments(binding, parent, "edit payments")
        if installment.statut != InstallmentStatus.PAYE:
            raise InstallmentStateError(str(installment.id), installment.statut, "edit a payment")

        previous = self.checks.linked_checks(binding, installment.id)
        if payment.checks:
            kept, new_checks = self._match_previous(previous, payment.checks)
            split = self._prepare_payment(
                binding, parent, installment, payment, new_checks=new_checks
            )
        else:
            standing = [c for c in previous if c.statut != CheckStatus.ANNULE]
            previous_total = CheckService.total(standing)
            new_checks = []
            split = self._prepare_payment(
                binding,
                parent,
                installment,
                payment,
                new_checks=new_checks,
                kept_checks_total=previous_total,
            )
            same_leg = abs(previous_total - split.montant_cheque) <= self.config.amount_tolerance
            kept = standing if same_leg else []

        kept_ids = {c.id for c in kept}
        self.checks.supersede(
            [c for c in previous if c.id not in kept_ids], actor_id, reason="payment_edited"
        )

        issued = self._write_payment(
            binding, parent, installment, split, payment, actor_id, new_checks=new_checks
        )
        aggregate = self.recalculator.recompute(binding, parent, actor_id)

        logger.info(
            "payment_edited",
            extra=self._payment_log(installment, split, aggregate.total_paid),
        )
        return self._result(binding, parent, installment, aggregate, issued)

    def cancel_payment(
        self,
        binding: ParentBinding,
        installment_id: UUID,
        actor_id: UUID,
    ) -> PaymentResult:
        """
        Cancel an installment (paid or not).

        Amounts stay on the row for the audit trail; the contribution to the
        parent drops to zero and the linked checks are superseded.
        """
        parent, installment = lock_installment(self.session, binding, installment_id)
        if installment.statut == InstallmentStatus.ANNULE:
            raise InstallmentStateError(str(installment.id), installment.statut, "cancel")

        previous_status = installment.statut
        installment.statut = InstallmentStatus.ANNULE.value
        installment.updated_by_id = actor_id
        self.session.flush()

        self.checks.supersede(
            self.checks.linked_checks(binding, installment.id),
            actor_id,
            reason="payment_cancelled",
        )
        self._sync_initial_advance(binding, parent, installment)
        aggregate = self.recalculator.recompute(binding, parent, actor_id)

        logger.info(
            "payment_cancelled",
            extra={
                "installment_id": str(installment.id),
                "numero_echeance": installment.numero_echeance,
                "previous_status": previous_status,
                "montant_paye": installment.montant_paye,
                "total_paid": aggregate.total_paid,
            },
        )
        return self._result(binding, parent, installment, aggregate, [])

    # ------------------------------------------------------------------
    # Payment method catalogue
    # ------------------------------------------------------------------

    def resolve_method(self, code: str) -> PaymentMethodSpec:
        row = self.session.execute(
            select(PaymentMethod).where(PaymentMethod.code == code)
        ).scalar_one_or_none()
        if row is None:
            raise UnknownPaymentMethodError(code)
        return PaymentMethodSpec.from_model(row)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _positive(self, value, field: str) -> Decimal:
        amount = round_money(to_money(value, field), self.config.money_decimal_places)
        if amount <= 0:
            raise NonPositiveAmountError(field, amount)
        return amount

    def _ensure_accepts_payments(self, binding: ParentBinding, parent, operation: str) -> None:
        if binding.kind == ParentKind.SALE and parent.statut == SaleStatus.ANNULE:
            raise SaleStateError(str(parent.id), parent.statut, operation)

    def _validate_sequence(
        self,
        binding: ParentBinding,
        parent_id: UUID,
        sequence_no,
        exclude_id: UUID | None = None,
    ) -> None:
        if isinstance(sequence_no, bool) or not isinstance(sequence_no, int) or sequence_no <= 0:
            raise InvalidSequenceNumberError(sequence_no)

        model = binding.installment_model
        query = select(model.id).where(
            binding.installment_fk_column() == parent_id,
            model.numero_echeance == sequence_no,
        )
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        if self.session.execute(query).first() is not None:
            raise DuplicateSequenceError(binding.kind.value, str(parent_id), sequence_no)

    def _next_sequence(self, binding: ParentBinding, parent_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(binding.installment_model.numero_echeance)).where(
                binding.installment_fk_column() == parent_id
            )
        ).scalar()
        return (current or 0) + 1

    def _prepare_payment(
        self,
        binding: ParentBinding,
        parent,
        installment,
        payment: PaymentInput,
        new_checks: list[CheckInput] | None = None,
        kept_checks_total: Decimal | None = None,
    ) -> SplitResult:
        """
        Validate everything about a payment before the first write.

        ``new_checks`` are the sub-objects that will be issued (all of
        ``payment.checks`` unless an edit keeps some existing checks).
        """
        method = self.resolve_method(payment.method)
        split = split_payment(
            payment.amount,
            method,
            payment.splits,
            tolerance=self.config.amount_tolerance,
            decimal_places=self.config.money_decimal_places,
            require_declared_split=self.config.require_declared_split,
        )
        self._validate_check_details(method, split, payment, kept_checks_total)
        self.checks.validate_inputs(payment.checks if new_checks is None else new_checks)

        current = self.recalculator.compute(binding, parent)
        old = ZERO if installment is None else self.recalculator.contribution_of(binding, installment)
        attempted = projected_total(current.total_paid, old, split.amount)
        if exceeds_contract(attempted, parent.contractual_total):
            logger.warning(
                "over_allocation_rejected",
                extra={
                    "contractual_total": parent.contractual_total,
                    "current_total_paid": current.total_paid,
                    "attempted_total_paid": attempted,
                },
            )
            raise OverAllocationError(
                binding.kind.value,
                str(parent.id),
                parent.contractual_total,
                current.total_paid,
                attempted,
            )
        return split

    def _validate_check_details(
        self,
        method: PaymentMethodSpec,
        split: SplitResult,
        payment: PaymentInput,
        kept_checks_total: Decimal | None,
    ) -> None:
        if payment.checks:
            if not method.has_check_leg:
                raise InvalidSplitError(
                    LEG_PAIR,
                    split.amount,
                    (split.montant_espece, CheckService.total(payment.checks)),
                    f"method '{method.code}' has no check leg",
                )
            total = CheckService.total(payment.checks)
            if abs(total - split.montant_cheque) > self.config.amount_tolerance:
                raise CheckAmountMismatchError(split.montant_cheque, total)
            return

        if split.montant_cheque > 0 and self.config.require_check_details:
            if kept_checks_total is not None and abs(
                kept_checks_total - split.montant_cheque
            ) <= self.config.amount_tolerance:
                return
            raise MissingSplitError(method.code, "check details")

    def _write_payment(
        self,
        binding: ParentBinding,
        parent,
        installment,
        split: SplitResult,
        payment: PaymentInput,
        actor_id: UUID,
        new_checks: list[CheckInput] | None = None,
    ) -> list[Check]:
        installment.montant_paye = split.amount
        installment.montant_declare = split.montant_declare
        installment.montant_non_declare = split.montant_non_declare
        installment.montant_espece = split.montant_espece
        installment.montant_cheque = split.montant_cheque
        installment.mode_paiement = split.method
        installment.date_paiement = payment.payment_date or self.clock.today()
        if payment.description is not None:
            installment.description = payment.description
        installment.statut = InstallmentStatus.PAYE.value
        installment.updated_by_id = actor_id
        self.session.flush()

        links = {
            binding.check_parent_fk: parent.id,
            binding.check_installment_fk: installment.id,
        }
        issued = [
            self.checks.issue(
                item,
                check_type=binding.check_type,
                actor_id=actor_id,
                project_id=parent.project_id,
                **links,
            )
            for item in (payment.checks if new_checks is None else new_checks)
        ]
        self._sync_initial_advance(binding, parent, installment)
        return issued

    def _sync_initial_advance(self, binding: ParentBinding, parent, installment) -> None:
        """Mirror the "Avance initiale" row on the sale's avance_* columns."""
        if binding.kind != ParentKind.SALE or not installment.is_initial_advance:
            return
        active = installment.statut != InstallmentStatus.ANNULE
        parent.avance_declare = installment.montant_declare if active else ZERO
        parent.avance_non_declare = installment.montant_non_declare if active else ZERO
        parent.avance_espece = installment.montant_espece if active else ZERO
        parent.avance_cheque = installment.montant_cheque if active else ZERO
        self.session.flush()

    def _result(self, binding, parent, installment, aggregate, issued) -> PaymentResult:
        return PaymentResult(
            installment=InstallmentInfo.from_model(installment, binding.kind, parent.id),
            aggregate=aggregate,
            checks=tuple(CheckInfo.from_model(c) for c in issued),
        )

    @staticmethod
    def _payment_log(installment, split: SplitResult, total_paid: Decimal) -> dict:
        return {
            "installment_id": str(installment.id),
            "numero_echeance": installment.numero_echeance,
            "montant_paye": split.amount,
            "mode_paiement": split.method,
            "montant_declare": split.montant_declare,
            "montant_non_declare": split.montant_non_declare,
            "montant_espece": split.montant_espece,
            "montant_cheque": split.montant_cheque,
            "total_paid": total_paid,
        }

    @staticmethod
    def _match_previous(
        previous: list[Check], inputs: tuple[CheckInput, ...]
    ) -> tuple[list[Check], list[CheckInput]]:
        """Split check sub-objects into already linked checks and new ones."""
        by_key = {
            (c.nom_emetteur, c.numero_cheque): c
            for c in previous
            if c.statut != CheckStatus.ANNULE
        }
        kept: list[Check] = []
        new: list[CheckInput] = []
        for item in inputs:
            match = by_key.get((issuer_key(item.nom_emetteur), item.numero_cheque.strip()))
            if match is not None and match.montant == item.montant:
                kept.append(match)
            else:
                new.append(item)
        return kept, new
