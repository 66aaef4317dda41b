"""
Module: payment_kernel.models.payment_method
Responsibility: Open catalogue of payment-method labels and the money legs
    each label carries.
Architecture position: Kernel > Models.  Imports db/ only.

Installment ``mode_paiement`` columns reference ``payment_methods.code``, so
a new label becomes usable by inserting a row (see db/migrations.py).  Rows
are never deleted or redefined.
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base


class PaymentMethod(Base):
    """One payment-method label (espece, cheque, cheque_espece, virement, ...)."""

    __tablename__ = "payment_methods"

    __table_args__ = (UniqueConstraint("code", name="uq_payment_method_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    label: Mapped[str] = mapped_column(String(100), nullable=False)

    # Portion booked as montant_espece
    has_cash_leg: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # Portion booked as montant_cheque
    has_check_leg: Mapped[bool] = mapped_column(Boolean, nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentMethod {self.code}>"
