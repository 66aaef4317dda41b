"""
Payment Reconciliation Kernel

Transactional core of a real-estate developer back-office:
- Installment schedules for property sales and supplier expenses
- Declared / non-declared and cash / check splits per payment
- Check lifecycle with nullable links to their originating installment
- Parent aggregates (total paid, remaining, payment status) kept in sync
- Unit capacity per project category
"""

__version__ = "0.1.0"
