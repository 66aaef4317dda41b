"""
Module: payment_kernel.db.base
Responsibility: Declarative base classes for every ORM row of the reconciliation
    core.  Fixes the UUID primary key convention, the column type map (money is
    always Numeric, never float) and the TrackedBase audit columns.
Architecture position: Kernel > DB.  Lowest-level import target of the package;
    models import from here, this module imports nothing from the package.

Invariants enforced:
    - Every row has a uuid4 primary key stored as a 36-character string.
    - Decimal maps to Numeric(38, 9); amounts are quantised to centimes by the
      services before they reach a column.
    - TrackedBase rows always know who created them (created_by_id NOT NULL).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) so the schema runs on PostgreSQL and SQLite alike."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all payment kernel models.

    Guarantees:
        - ``id`` is a uuid4 generated client side.
        - Decimal -> Numeric(38, 9), datetime -> timezone-aware DateTime,
          int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base carrying who/when audit metadata.

    ``created_by_id`` is the actor passed to the command facade; the API layer
    resolves it from its own session handling.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)

    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
