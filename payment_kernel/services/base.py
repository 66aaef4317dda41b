"""
BaseService -- common constructor for write services.

Every write service receives the caller's ``Session`` and persists through
``session.flush()`` only.  ``PaymentCommandService`` is the single component
that commits or rolls back, so an installment mutation, the checks it
issues and the parent recomputation land in one transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session

from payment_kernel.config import ReconciliationConfig


class BaseService(ABC):
    """
    Flush-only service.

    Subclasses must never call ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session, config: ReconciliationConfig | None = None):
        self.session = session
        self.config = config or ReconciliationConfig()
