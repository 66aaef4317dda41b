"""ORM models for the payment kernel."""

from payment_kernel.models.check import Check
from payment_kernel.models.expense import Expense
from payment_kernel.models.expense_payment_plan import ExpensePaymentPlan
from payment_kernel.models.payment_method import PaymentMethod
from payment_kernel.models.payment_plan import PaymentPlan
from payment_kernel.models.project import CAPACITY_COLUMNS, Project
from payment_kernel.models.sale import Sale

__all__ = [
    "CAPACITY_COLUMNS",
    "Check",
    "Expense",
    "ExpensePaymentPlan",
    "PaymentMethod",
    "PaymentPlan",
    "Project",
    "Sale",
    "import_all_models",
]


def import_all_models() -> None:
    """
    Make sure every model is registered on ``Base.metadata``.

    Importing this package already does it; the function gives engine code
    an explicit call to make before ``create_all``.
    """
