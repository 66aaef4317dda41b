"""
Module: payment_kernel.db.migrations
Responsibility: Additive schema migrations for the payment-method catalogue.

Payment-method labels are rows of ``payment_methods``, referenced by
installment ``mode_paiement`` through a foreign key.  Introducing a label
(historically ``cheque_espece``) is an INSERT that never touches existing
labels, so it runs without downtime and without rewriting installment rows.

Rules:
    - Adding an existing code with the same legs is a no-op.
    - Adding an existing code with different legs fails
      (PaymentMethodConflictError); a label's meaning never changes.
    - There is no removal operation.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.dtos import PaymentMethodSpec
from payment_kernel.exceptions import PaymentMethodConflictError
from payment_kernel.logging_config import get_logger
from payment_kernel.models.payment_method import PaymentMethod

logger = get_logger("db.migrations")

DEFAULT_PAYMENT_METHODS: tuple[PaymentMethodSpec, ...] = (
    PaymentMethodSpec("espece", has_cash_leg=True, has_check_leg=False, label="Espèces"),
    PaymentMethodSpec("cheque", has_cash_leg=False, has_check_leg=True, label="Chèque"),
    PaymentMethodSpec(
        "cheque_espece", has_cash_leg=True, has_check_leg=True, label="Chèque et espèces"
    ),
    PaymentMethodSpec("virement", has_cash_leg=True, has_check_leg=False, label="Virement"),
)


def add_payment_method(session: Session, spec: PaymentMethodSpec) -> bool:
    """
    Add one label to the catalogue.

    Returns:
        True when a row was inserted, False when the identical label exists.

    Raises:
        PaymentMethodConflictError: the code exists with different legs.
    """
    existing = session.execute(
        select(PaymentMethod).where(PaymentMethod.code == spec.code)
    ).scalar_one_or_none()

    if existing is not None:
        if (existing.has_cash_leg, existing.has_check_leg) != (
            spec.has_cash_leg,
            spec.has_check_leg,
        ):
            raise PaymentMethodConflictError(
                spec.code,
                f"exists with cash_leg={existing.has_cash_leg}, "
                f"check_leg={existing.has_check_leg}",
            )
        return False

    session.add(
        PaymentMethod(
            code=spec.code,
            label=spec.label or spec.code,
            has_cash_leg=spec.has_cash_leg,
            has_check_leg=spec.has_check_leg,
        )
    )
    session.flush()
    logger.info(
        "payment_method_added",
        extra={
            "code": spec.code,
            "has_cash_leg": spec.has_cash_leg,
            "has_check_leg": spec.has_check_leg,
        },
    )
    return True


def seed_payment_methods(session: Session) -> int:
    """Insert the built-in labels that are missing. Returns the number inserted."""
    return sum(add_payment_method(session, spec) for spec in DEFAULT_PAYMENT_METHODS)
