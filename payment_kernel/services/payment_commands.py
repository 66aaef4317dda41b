"""
PaymentCommandService -- transactional entry point of the reconciliation core.

Responsibility:
    Exposes every mutating operation the API layer may call (projects,
    sales, expenses, installments, payments, checks, payment methods) and
    runs each one as exactly one transaction: the row mutation, the check
    side effects, the invariant checks and the parent recomputation commit
    together or not at all.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Every other write service is flush-only and is composed here.

Command flow:
    command(...)
      1. Bind log context (correlation id, actor, parent, installment, check)
      2. PostgreSQL: SET LOCAL lock_timeout
      3. Delegate to the flush-only service (locks parent before children)
      4. Commit (auto_commit=True) and return a frozen DTO
      5. On any error: roll back, translate storage errors, re-raise

Error translation:
    PaymentKernelError           -> re-raised unchanged
    StaleDataError               -> OptimisticLockError (retryable)
    55P03 / 40001 / 40P01,
    SQLite "database is locked"  -> LockTimeoutError (retryable)
    any other SQLAlchemyError    -> StorageError

Audit relevance:
    Every command logs start, completion or failure with its duration and
    the actor id; rejections log at WARNING, storage failures at ERROR with
    the traceback.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from payment_kernel.config import ReconciliationConfig
from payment_kernel.db.migrations import add_payment_method
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.dtos import (
    CheckInfo,
    CheckInput,
    CheckType,
    ExpenseInfo,
    InstallmentInfo,
    ParentAggregate,
    ParentKind,
    PaymentInput,
    PaymentMethodSpec,
    PaymentResult,
    ProjectInfo,
    SaleInfo,
)
from payment_kernel.exceptions import (
    LockTimeoutError,
    OptimisticLockError,
    PaymentKernelError,
    StorageError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.services.aggregate_recalculator import AggregateRecalculator
from payment_kernel.services.capacity_validator import CapacityValidator
from payment_kernel.services.check_service import CheckService
from payment_kernel.services.expense_service import ExpenseService
from payment_kernel.services.installment_ledger import InstallmentLedger
from payment_kernel.services.parents import (
    EXPENSE_BINDING,
    SALE_BINDING,
    binding_for,
    lock_parent,
)
from payment_kernel.services.project_service import ProjectService
from payment_kernel.services.sale_service import SaleService

logger = get_logger("services.payment_commands")

T = TypeVar("T")

# lock_not_available, serialization_failure, deadlock_detected
_LOCK_SQLSTATES = frozenset({"55P03", "40001", "40P01"})


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _is_lock_failure(exc: SQLAlchemyError) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    if _sqlstate(exc) in _LOCK_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig).lower()


class PaymentCommandService:
    """
    One public method per command; one transaction per call.

    Usage:
        commands = PaymentCommandService(session, config, clock)
        result = commands.record_payment(
            "sale",
            installment_id,
            PaymentInput(amount=Decimal("150000"), method="cheque_espece", splits=...),
            actor_id=user_id,
        )

    With ``auto_commit=False`` the caller owns commit and rollback; the
    error translation still applies.
    """

    def __init__(
        self,
        session: Session,
        config: ReconciliationConfig | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config or ReconciliationConfig()
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        self._checks = CheckService(session, self._config)
        self._recalculator = AggregateRecalculator(session, self._config)
        self._ledger = InstallmentLedger(
            session,
            self._config,
            clock=self._clock,
            checks=self._checks,
            recalculator=self._recalculator,
        )
        self._capacity = CapacityValidator(session, self._config)
        self._projects = ProjectService(session, self._config, validator=self._capacity)
        self._sales = SaleService(
            session, self._config, ledger=self._ledger, validator=self._capacity
        )
        self._expenses = ExpenseService(session, self._config, ledger=self._ledger)

    # ------------------------------------------------------------------
    # Transaction wrapper
    # ------------------------------------------------------------------

    def _run(self, operation: str, actor_id: UUID, fn: Callable[[], T], **context) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            **{k: (str(v) if v is not None else None) for k, v in context.items()},
        ):
            logger.info(f"{operation}_started")
            t0 = time.monotonic()
            try:
                self._apply_lock_timeout()
                result = fn()
                if self._auto_commit:
                    self._session.commit()
            except PaymentKernelError as exc:
                self._rollback()
                logger.warning(
                    f"{operation}_rejected",
                    extra={"duration_ms": self._elapsed(t0), "error_code": exc.code},
                )
                raise
            except StaleDataError as exc:
                self._rollback()
                logger.warning(
                    f"{operation}_conflict",
                    extra={"duration_ms": self._elapsed(t0)},
                )
                raise OptimisticLockError(operation, str(exc)) from exc
            except SQLAlchemyError as exc:
                self._rollback()
                if _is_lock_failure(exc):
                    logger.warning(
                        f"{operation}_lock_timeout",
                        extra={"duration_ms": self._elapsed(t0)},
                    )
                    raise LockTimeoutError(operation, str(exc.orig)) from exc
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": self._elapsed(t0)},
                    exc_info=True,
                )
                raise StorageError(operation, type(exc).__name__) from exc
            except Exception:
                self._rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": self._elapsed(t0)},
                    exc_info=True,
                )
                raise

            logger.info(f"{operation}_completed", extra={"duration_ms": self._elapsed(t0)})
            return result

    def _apply_lock_timeout(self) -> None:
        if self._session.get_bind().dialect.name != "postgresql":
            return
        self._session.execute(
            text(f"SET LOCAL lock_timeout = '{int(self._config.lock_timeout_ms)}ms'")
        )

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    @staticmethod
    def _elapsed(t0: float) -> float:
        return round((time.monotonic() - t0) * 1000, 2)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, nom: str, actor_id: UUID, **fields) -> ProjectInfo:
        return self._run(
            "create_project",
            actor_id,
            lambda: ProjectInfo.from_model(self._projects.create_project(nom, actor_id, **fields)),
        )

    def update_project_capacity(
        self,
        project_id: UUID,
        actor_id: UUID,
        nombre_appartements: int | None = None,
        nombre_garages: int | None = None,
        nombre_lots: int | None = None,
    ) -> ProjectInfo:
        return self._run(
            "update_project_capacity",
            actor_id,
            lambda: ProjectInfo.from_model(
                self._projects.update_project_capacity(
                    project_id,
                    actor_id,
                    nombre_appartements=nombre_appartements,
                    nombre_garages=nombre_garages,
                    nombre_lots=nombre_lots,
                )
            ),
        )

    def validate_capacity_change(
        self, project_id: UUID, category: str, new_capacity: int, actor_id: UUID
    ) -> None:
        """Dry run of a capacity change (locks, checks, writes nothing)."""
        self._run(
            "validate_capacity_change",
            actor_id,
            lambda: self._capacity.validate_capacity_change(project_id, category, new_capacity),
        )

    # ------------------------------------------------------------------
    # Sales and expenses
    # ------------------------------------------------------------------

    def create_sale(
        self,
        project_id: UUID,
        actor_id: UUID,
        *,
        type_propriete: str,
        unite_numero: str,
        client_nom: str,
        prix_total: Decimal,
        advance: PaymentInput | None = None,
        **fields,
    ) -> SaleInfo:
        def create() -> SaleInfo:
            sale, _ = self._sales.create_sale(
                project_id,
                actor_id,
                type_propriete=type_propriete,
                unite_numero=unite_numero,
                client_nom=client_nom,
                prix_total=prix_total,
                advance=advance,
                **fields,
            )
            return SaleInfo.from_model(sale)

        return self._run("create_sale", actor_id, create, parent_type=ParentKind.SALE.value)

    def cancel_sale(self, sale_id: UUID, actor_id: UUID) -> SaleInfo:
        return self._run(
            "cancel_sale",
            actor_id,
            lambda: SaleInfo.from_model(self._sales.cancel_sale(sale_id, actor_id)),
            parent_type=ParentKind.SALE.value,
            parent_id=sale_id,
        )

    def update_sale_price(self, sale_id: UUID, prix_total: Decimal, actor_id: UUID) -> ParentAggregate:
        return self._run(
            "update_sale_price",
            actor_id,
            lambda: self._sales.update_sale_price(sale_id, prix_total, actor_id),
            parent_type=ParentKind.SALE.value,
            parent_id=sale_id,
        )

    def create_expense(
        self,
        project_id: UUID,
        nom: str,
        montant_total: Decimal,
        actor_id: UUID,
        **fields,
    ) -> ExpenseInfo:
        return self._run(
            "create_expense",
            actor_id,
            lambda: ExpenseInfo.from_model(
                self._expenses.create_expense(project_id, nom, montant_total, actor_id, **fields)
            ),
            parent_type=ParentKind.EXPENSE.value,
        )

    # ------------------------------------------------------------------
    # Installments and payments
    # ------------------------------------------------------------------

    def create_installment(
        self,
        parent_type: ParentKind | str,
        parent_id: UUID,
        sequence_no: int,
        planned_amount: Decimal,
        actor_id: UUID,
        planned_date: date | None = None,
        description: str | None = None,
    ) -> InstallmentInfo:
        binding = binding_for(parent_type)
        return self._run(
            "create_installment",
            actor_id,
            lambda: self._ledger.create_installment(
                binding,
                parent_id,
                sequence_no,
                planned_amount,
                actor_id,
                planned_date=planned_date,
                description=description,
            ),
            parent_type=binding.kind.value,
            parent_id=parent_id,
        )

    def record_payment(
        self,
        parent_type: ParentKind | str,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentResult:
        binding = binding_for(parent_type)
        return self._run(
            "record_payment",
            actor_id,
            lambda: self._ledger.record_payment(binding, installment_id, payment, actor_id),
            parent_type=binding.kind.value,
            installment_id=installment_id,
        )

    def add_payment(
        self,
        parent_type: ParentKind | str,
        parent_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
        sequence_no: int | None = None,
        planned_date: date | None = None,
    ) -> PaymentResult:
        binding = binding_for(parent_type)
        return self._run(
            "add_payment",
            actor_id,
            lambda: self._ledger.add_payment(
                binding,
                parent_id,
                payment,
                actor_id,
                sequence_no=sequence_no,
                planned_date=planned_date,
            ),
            parent_type=binding.kind.value,
            parent_id=parent_id,
        )

    def edit_payment(
        self,
        parent_type: ParentKind | str,
        installment_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentResult:
        binding = binding_for(parent_type)
        return self._run(
            "edit_payment",
            actor_id,
            lambda: self._ledger.edit_payment(binding, installment_id, payment, actor_id),
            parent_type=binding.kind.value,
            installment_id=installment_id,
        )

    def cancel_payment(
        self,
        parent_type: ParentKind | str,
        installment_id: UUID,
        actor_id: UUID,
    ) -> PaymentResult:
        binding = binding_for(parent_type)
        return self._run(
            "cancel_payment",
            actor_id,
            lambda: self._ledger.cancel_payment(binding, installment_id, actor_id),
            parent_type=binding.kind.value,
            installment_id=installment_id,
        )

    def reschedule_installment(
        self,
        parent_type: ParentKind | str,
        installment_id: UUID,
        actor_id: UUID,
        planned_amount: Decimal | None = None,
        planned_date: date | None = None,
        sequence_no: int | None = None,
        description: str | None = None,
    ) -> InstallmentInfo:
        binding = binding_for(parent_type)
        return self._run(
            "reschedule_installment",
            actor_id,
            lambda: self._ledger.reschedule_installment(
                binding,
                installment_id,
                actor_id,
                planned_amount=planned_amount,
                planned_date=planned_date,
                sequence_no=sequence_no,
                description=description,
            ),
            parent_type=binding.kind.value,
            installment_id=installment_id,
        )

    def delete_installment(
        self, parent_type: ParentKind | str, installment_id: UUID, actor_id: UUID
    ) -> None:
        binding = binding_for(parent_type)
        self._run(
            "delete_installment",
            actor_id,
            lambda: self._ledger.delete_installment(binding, installment_id, actor_id),
            parent_type=binding.kind.value,
            installment_id=installment_id,
        )

    def refresh_overdue(
        self,
        parent_type: ParentKind | str,
        parent_id: UUID,
        actor_id: UUID,
        as_of: date | None = None,
    ) -> int:
        binding = binding_for(parent_type)
        return self._run(
            "refresh_overdue",
            actor_id,
            lambda: self._ledger.refresh_overdue(binding, parent_id, actor_id, as_of=as_of),
            parent_type=binding.kind.value,
            parent_id=parent_id,
        )

    def recompute_aggregate(
        self, parent_type: ParentKind | str, parent_id: UUID, actor_id: UUID
    ) -> ParentAggregate:
        """Rewrite a parent's stored aggregate from its rows (repair tool)."""
        binding = binding_for(parent_type)

        def recompute() -> ParentAggregate:
            parent = lock_parent(self._session, binding, parent_id)
            return self._recalculator.recompute(binding, parent, actor_id)

        return self._run(
            "recompute_aggregate",
            actor_id,
            recompute,
            parent_type=binding.kind.value,
            parent_id=parent_id,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def issue_check(
        self,
        check: CheckInput,
        check_type: CheckType | str,
        actor_id: UUID,
        project_id: UUID | None = None,
        sale_id: UUID | None = None,
        expense_id: UUID | None = None,
    ) -> CheckInfo:
        """
        Record a standalone check (not attached to an installment).

        Such a check never counts toward a parent aggregate.
        """
        check_type = CheckType(check_type)

        def issue() -> CheckInfo:
            if sale_id is not None:
                lock_parent(self._session, SALE_BINDING, sale_id)
            if expense_id is not None:
                lock_parent(self._session, EXPENSE_BINDING, expense_id)
            row = self._checks.issue(
                check,
                check_type=check_type,
                actor_id=actor_id,
                project_id=project_id,
                sale_id=sale_id,
                expense_id=expense_id,
            )
            return CheckInfo.from_model(row)

        return self._run("issue_check", actor_id, issue)

    def clear_check(self, check_id: UUID, clearing_date: date, actor_id: UUID) -> CheckInfo:
        def clear() -> CheckInfo:
            self._lock_check_parent(check_id)
            return CheckInfo.from_model(self._checks.clear(check_id, clearing_date, actor_id))

        return self._run("clear_check", actor_id, clear, check_id=check_id)

    def cancel_check(self, check_id: UUID, actor_id: UUID) -> CheckInfo:
        """
        emis -> annule.

        A check still linked to a live installment is a bounced payment: the
        parent aggregate is recomputed in the same transaction.
        """
        def cancel() -> CheckInfo:
            link = self._lock_check_parent(check_id)
            check = self._checks.cancel(check_id, actor_id)
            if link is not None and not check.link_stale:
                binding, parent = link
                self._recalculator.recompute(binding, parent, actor_id)
            return CheckInfo.from_model(check)

        return self._run("cancel_check", actor_id, cancel, check_id=check_id)

    def _lock_check_parent(self, check_id: UUID):
        link = self._checks.live_link_of(check_id)
        if link is None:
            return None
        binding, parent_id = link
        return binding, lock_parent(self._session, binding, parent_id)

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------

    def add_payment_method(
        self,
        code: str,
        label: str,
        has_cash_leg: bool,
        has_check_leg: bool,
        actor_id: UUID,
    ) -> bool:
        """Additive catalogue migration. Returns False when already present."""
        spec = PaymentMethodSpec(
            code=code, has_cash_leg=has_cash_leg, has_check_leg=has_check_leg, label=label
        )
        return self._run(
            "add_payment_method",
            actor_id,
            lambda: add_payment_method(self._session, spec),
        )
