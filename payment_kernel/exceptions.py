"""
Typed Exception Hierarchy for the Payment Reconciliation Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The API layer in front of this kernel turns errors into user-facing messages
("le montant payé dépasse le prix total", "ce chèque est déjà encaissé").
It must never parse message strings to decide which message to show, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (current totals, capacities, states)
  4. Every exception says whether the caller may simply RETRY it

Example:
    try:
        commands.record_payment(...)
    except OverAllocationError as e:
        api_response(
            code=e.code,
            contractual_total=e.contractual_total,
            current_total_paid=e.current_total_paid,
        )
    except ConcurrencyError:
        # Re-read and retry; nothing was applied
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PaymentKernelError (base)
    |
    +-- ValidationError              rejected before any write
    |   +-- NonPositiveAmountError
    |   +-- InvalidSplitError
    |   |   +-- CheckAmountMismatchError
    |   +-- MissingSplitError
    |   +-- UnknownPaymentMethodError
    |   +-- PaymentMethodConflictError
    |   +-- InvalidSequenceNumberError
    |   +-- DuplicateSequenceError
    |   +-- DuplicateCheckNumberError
    |   +-- InvalidCapacityError
    |   +-- UnitAlreadySoldError
    |   +-- InvalidDateError
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- SaleNotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- InstallmentNotFoundError
    |   +-- CheckNotFoundError
    |
    +-- ConsistencyError             rejected at the transactional boundary
    |   +-- OverAllocationError
    |   +-- CapacityBelowSoldError
    |   +-- CapacityExceededError
    |
    +-- StateTransitionError         entity stays in its prior state
    |   +-- InvalidCheckTransitionError
    |   +-- InstallmentStateError
    |   +-- SaleStateError
    |
    +-- ConcurrencyError             retryable
    |   +-- LockTimeoutError
    |   +-- OptimisticLockError
    |
    +-- StorageError                 opaque persistence failure, rolled back

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors are caught as a
   group and never mixed up with programming errors.
2. ``code`` and ``retryable`` are class attributes so middleware can map
   them without instantiating anything.
3. Monetary context is stored as ``str`` of the Decimal, so the exception
   serializes to JSON without precision loss.
"""

from decimal import Decimal


def _fmt(amount: Decimal | str | None) -> str | None:
    if amount is None:
        return None
    return str(amount)


class PaymentKernelError(Exception):
    """Base exception for all payment kernel errors."""

    code: str = "PAYMENT_KERNEL_ERROR"
    retryable: bool = False


# Validation errors


class ValidationError(PaymentKernelError):
    """Input rejected before any write; safe to retry after correction."""

    code: str = "VALIDATION_ERROR"


class NonPositiveAmountError(ValidationError):
    """A monetary amount that must be strictly positive is not."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, field: str, amount: Decimal | str):
        self.field = field
        self.amount = _fmt(amount)
        super().__init__(f"{field} must be strictly positive, got {amount}")


class InvalidSplitError(ValidationError):
    """Sub-amounts do not add up to the payment total."""

    code: str = "INVALID_SPLIT"

    def __init__(self, pair: str, total: Decimal | str, parts: tuple, reason: str):
        self.pair = pair
        self.total = _fmt(total)
        self.parts = [_fmt(p) for p in parts]
        self.reason = reason
        super().__init__(f"Invalid {pair} split for total {total}: {reason}")


class CheckAmountMismatchError(InvalidSplitError):
    """Check sub-objects do not add up to the payment's check leg."""

    code: str = "CHECK_AMOUNT_MISMATCH"

    def __init__(self, check_leg: Decimal | str, checks_total: Decimal | str):
        self.check_leg = _fmt(check_leg)
        self.checks_total = _fmt(checks_total)
        super().__init__(
            pair="check",
            total=check_leg,
            parts=(checks_total,),
            reason=f"checks add up to {checks_total}",
        )


class MissingSplitError(ValidationError):
    """A payment needs an explicit split that was not supplied."""

    code: str = "MISSING_SPLIT"

    def __init__(self, method: str, pair: str):
        self.method = method
        self.pair = pair
        super().__init__(
            f"Payment method '{method}' requires an explicit {pair} split"
        )


class UnknownPaymentMethodError(ValidationError):
    """Payment method label is not in the catalogue."""

    code: str = "UNKNOWN_PAYMENT_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown payment method: '{method}'")


class PaymentMethodConflictError(ValidationError):
    """Payment method exists with a different leg definition."""

    code: str = "PAYMENT_METHOD_CONFLICT"

    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"Payment method '{method}' conflicts: {reason}")


class InvalidSequenceNumberError(ValidationError):
    """Installment sequence numbers are positive integers."""

    code: str = "INVALID_SEQUENCE_NUMBER"

    def __init__(self, sequence_no):
        self.sequence_no = sequence_no
        super().__init__(f"Installment sequence number must be positive, got {sequence_no}")


class DuplicateSequenceError(ValidationError):
    """Sequence number already used by another installment of the parent."""

    code: str = "DUPLICATE_SEQUENCE"

    def __init__(self, parent_type: str, parent_id: str, sequence_no: int):
        self.parent_type = parent_type
        self.parent_id = parent_id
        self.sequence_no = sequence_no
        super().__init__(
            f"Installment #{sequence_no} already exists for {parent_type} {parent_id}"
        )


class DuplicateCheckNumberError(ValidationError):
    """Check number already issued by the same issuer."""

    code: str = "DUPLICATE_CHECK_NUMBER"

    def __init__(self, numero_cheque: str, nom_emetteur: str | None, existing_check_id: str):
        self.numero_cheque = numero_cheque
        self.nom_emetteur = nom_emetteur
        self.existing_check_id = existing_check_id
        super().__init__(
            f"Check {numero_cheque} already issued by '{nom_emetteur}' "
            f"(check {existing_check_id})"
        )


class InvalidCapacityError(ValidationError):
    """Capacity values are non-negative integers."""

    code: str = "INVALID_CAPACITY"

    def __init__(self, category: str, value):
        self.category = category
        self.value = value
        super().__init__(f"Capacity for {category} must be >= 0, got {value}")


class UnitAlreadySoldError(ValidationError):
    """An active sale already holds this unit number in the project."""

    code: str = "UNIT_ALREADY_SOLD"

    def __init__(self, project_id: str, unite_numero: str, sale_id: str):
        self.project_id = project_id
        self.unite_numero = unite_numero
        self.sale_id = sale_id
        super().__init__(
            f"Unit {unite_numero} of project {project_id} is already sold (sale {sale_id})"
        )


class InvalidDateError(ValidationError):
    """Date is inconsistent with a related date."""

    code: str = "INVALID_DATE"

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value}: {reason}")


# Not found errors


class NotFoundError(PaymentKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ProjectNotFoundError(NotFoundError):
    code: str = "PROJECT_NOT_FOUND"
    entity_type: str = "Project"


class SaleNotFoundError(NotFoundError):
    code: str = "SALE_NOT_FOUND"
    entity_type: str = "Sale"


class ExpenseNotFoundError(NotFoundError):
    code: str = "EXPENSE_NOT_FOUND"
    entity_type: str = "Expense"


class InstallmentNotFoundError(NotFoundError):
    code: str = "INSTALLMENT_NOT_FOUND"
    entity_type: str = "Installment"


class CheckNotFoundError(NotFoundError):
    code: str = "CHECK_NOT_FOUND"
    entity_type: str = "Check"


# Consistency errors


class ConsistencyError(PaymentKernelError):
    """Cross-row invariant would be violated; carries the current state."""

    code: str = "CONSISTENCY_ERROR"


class OverAllocationError(ConsistencyError):
    """Cumulative payments would exceed the parent's contractual total."""

    code: str = "OVER_ALLOCATION"

    def __init__(
        self,
        parent_type: str,
        parent_id: str,
        contractual_total: Decimal,
        current_total_paid: Decimal,
        attempted_total_paid: Decimal,
    ):
        self.parent_type = parent_type
        self.parent_id = parent_id
        self.contractual_total = _fmt(contractual_total)
        self.current_total_paid = _fmt(current_total_paid)
        self.attempted_total_paid = _fmt(attempted_total_paid)
        self.available = _fmt(max(contractual_total - current_total_paid, Decimal("0")))
        super().__init__(
            f"{parent_type} {parent_id}: total paid would be {attempted_total_paid}, "
            f"contractual total is {contractual_total} "
            f"(already paid {current_total_paid})"
        )


class CapacityBelowSoldError(ConsistencyError):
    """Capacity reduction below the number of active sales."""

    code: str = "CAPACITY_BELOW_SOLD"

    def __init__(self, project_id: str, category: str, requested: int, active_sold: int):
        self.project_id = project_id
        self.category = category
        self.requested = requested
        self.active_sold = active_sold
        super().__init__(
            f"Project {project_id}: cannot set {category} capacity to {requested}, "
            f"{active_sold} active sale(s) already recorded"
        )


class CapacityExceededError(ConsistencyError):
    """New sale would exceed the declared capacity of its category."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, project_id: str, category: str, capacity: int, active_sold: int):
        self.project_id = project_id
        self.category = category
        self.capacity = capacity
        self.active_sold = active_sold
        super().__init__(
            f"Project {project_id}: {category} capacity {capacity} reached "
            f"({active_sold} active sale(s))"
        )


# State transition errors


class StateTransitionError(PaymentKernelError):
    """Transition not allowed from the entity's current state."""

    code: str = "STATE_TRANSITION_ERROR"


class InvalidCheckTransitionError(StateTransitionError):
    """Checks only move emis -> encaisse or emis -> annule."""

    code: str = "INVALID_CHECK_TRANSITION"

    def __init__(self, check_id: str, from_status: str, to_status: str):
        self.check_id = check_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Check {check_id}: transition {from_status} -> {to_status} not allowed"
        )


class InstallmentStateError(StateTransitionError):
    """Operation not allowed for the installment's current status."""

    code: str = "INVALID_INSTALLMENT_STATE"

    def __init__(self, installment_id: str, status: str, operation: str):
        self.installment_id = installment_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Installment {installment_id} is '{status}': cannot {operation}"
        )


class SaleStateError(StateTransitionError):
    """Operation not allowed for the sale's current status."""

    code: str = "INVALID_SALE_STATE"

    def __init__(self, sale_id: str, status: str, operation: str):
        self.sale_id = sale_id
        self.status = status
        self.operation = operation
        super().__init__(f"Sale {sale_id} is '{status}': cannot {operation}")


# Concurrency errors


class ConcurrencyError(PaymentKernelError):
    """Concurrent access conflict; nothing was applied, re-read and retry."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class LockTimeoutError(ConcurrencyError):
    """Row lock could not be acquired in time (or deadlock victim)."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: could not acquire lock ({detail})")


class OptimisticLockError(ConcurrencyError):
    """Row version changed underneath the transaction."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"{operation}: entity was modified by another transaction ({detail})"
        )


# Storage errors


class StorageError(PaymentKernelError):
    """Unexpected persistence failure; the transaction was rolled back."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: storage failure ({detail})")
