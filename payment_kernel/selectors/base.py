"""
Module: payment_kernel.selectors.base
Responsibility: Base class for read-only selectors.

Selectors run in the caller's session, never add, flush or commit, and return
frozen DTOs rather than ORM rows.  Reads do not lock: at READ COMMITTED they
see only committed aggregates, which writers update in the same transaction
as the installments they derive from.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Read-only query object bound to a caller-owned session."""

    def __init__(self, session: Session):
        self.session = session
