"""
Tests for the JSON log lines the kernel writes: exact amounts and dates,
domain context fields, and the structured attributes of kernel errors.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payment_kernel.domain.dtos import CheckStatus, ParentKind
from payment_kernel.exceptions import LockTimeoutError, OverAllocationError
from payment_kernel.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def log_lines():
    """A fresh payment_kernel handler; yields (logger, read) and restores the suite setup."""
    stream = StringIO()
    reset_logging()
    configure_logging(handler=logging.StreamHandler(stream), level=logging.DEBUG)

    def read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield get_logger("services.test"), read

    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestPayload:

    def test_amounts_and_dates_are_exact_strings(self, log_lines):
        logger, read = log_lines
        logger.info(
            "payment_recorded",
            extra={
                "montant_paye": Decimal("150000.10"),
                "montant_cheque": Decimal("0.000000001"),
                "date_paiement": date(2024, 3, 1),
            },
        )

        (record,) = read()
        assert record["message"] == "payment_recorded"
        assert record["logger"] == "payment_kernel.services.test"
        assert record["montant_paye"] == "150000.10"
        assert record["montant_cheque"] == "1E-9"
        assert record["date_paiement"] == "2024-03-01"

    def test_enums_and_uuids(self, log_lines):
        logger, read = log_lines
        sale_id = uuid4()
        logger.info("check_cleared", extra={"statut": CheckStatus.ENCAISSE, "sale_id": sale_id})

        (record,) = read()
        assert record["statut"] == "encaisse"
        assert record["sale_id"] == str(sale_id)

    def test_accented_labels_kept(self, log_lines):
        logger, read = log_lines
        logger.info("project_created", extra={"nom": "Résidence Atlas"})
        assert read()[0]["nom"] == "Résidence Atlas"


class TestKernelErrors:

    def test_structured_attributes(self, log_lines):
        logger, read = log_lines
        try:
            raise OverAllocationError(
                "sale", "s-1", Decimal("500000"), Decimal("500000"), Decimal("500100")
            )
        except OverAllocationError:
            logger.warning("add_payment_rejected", exc_info=True)

        (record,) = read()
        assert record["exc_type"] == "OverAllocationError"
        assert record["exc_code"] == "OVER_ALLOCATION"
        assert record["exc_retryable"] is False
        assert record["exc_contractual_total"] == "500000"
        assert record["exc_attempted_total_paid"] == "500100"
        assert record["exc_available"] == "0"
        assert "exc_args" not in record
        assert "traceback" in record

    def test_concurrency_errors_flagged_retryable(self, log_lines):
        logger, read = log_lines
        try:
            raise LockTimeoutError("add_payment", "lock_timeout")
        except LockTimeoutError:
            logger.warning("add_payment_lock_timeout", exc_info=True)

        record = read()[0]
        assert record["exc_code"] == "LOCK_TIMEOUT"
        assert record["exc_retryable"] is True

    def test_foreign_errors_have_no_code(self, log_lines):
        logger, read = log_lines
        try:
            raise KeyError("installment")
        except KeyError:
            logger.error("add_payment_failed", exc_info=True)

        record = read()[0]
        assert record["exc_type"] == "KeyError"
        assert "exc_code" not in record
        assert "exc_retryable" not in record


class TestLogContext:

    def test_context_on_every_line(self, log_lines):
        logger, read = log_lines
        installment_id = uuid4()
        with LogContext.bind(
            correlation_id="c-1", parent_type=ParentKind.EXPENSE, installment_id=installment_id
        ):
            logger.info("payment_recorded")
            logger.debug("aggregate_recomputed")
        logger.info("after")

        first, second, after = read()
        for record in (first, second):
            assert record["correlation_id"] == "c-1"
            assert record["parent_type"] == "expense"
            assert record["installment_id"] == str(installment_id)
        assert "correlation_id" not in after

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(correlation_id="outer", parent_id="p-1"):
            with LogContext.bind(correlation_id="inner", check_id="k-1"):
                assert LogContext.get_all() == {
                    "correlation_id": "inner",
                    "parent_id": "p-1",
                    "check_id": "k-1",
                }
            assert LogContext.get_all() == {"correlation_id": "outer", "parent_id": "p-1"}
        assert LogContext.get_all() == {}

    def test_none_leaves_field_unchanged(self):
        LogContext.set(actor_id="a-1")
        LogContext.set(actor_id=None, parent_type="sale")
        assert LogContext.get_all() == {"actor_id": "a-1", "parent_type": "sale"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="project_code"):
            with LogContext.bind(project_code="X"):
                pass
        with pytest.raises(ValueError):
            LogContext.set(numero_cheque="1")


class TestConfigure:

    def test_second_configure_is_ignored(self, log_lines):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("payment_kernel").handlers) == 1
