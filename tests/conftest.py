"""
Pytest fixtures for the payment kernel test suite.

Provides:
- A database engine and schema created once per test session
- Per-test sessions with real commits and DELETE cleanup at teardown
- The command facade, selectors and builders for projects, sales, expenses
- Payment input helpers shared by the service and integration tests

Environment Variables:
- PAYMENT_KERNEL_TEST_DATABASE_URL: database for the suite.  Defaults to an
  in-memory SQLite database; point it at PostgreSQL (postgresql+psycopg://...)
  to run the lock and concurrency tests, which are skipped on SQLite.
"""

import json
import logging
import os
import threading
from collections.abc import Callable, Generator
from datetime import date
from decimal import Decimal
from io import StringIO
from itertools import count
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from payment_kernel.config import ReconciliationConfig
from payment_kernel.db.base import Base
from payment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from payment_kernel.db.migrations import DEFAULT_PAYMENT_METHODS
from payment_kernel.domain.clock import DeterministicClock
from payment_kernel.domain.dtos import CheckInput, PaymentInput, SplitInput
from payment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payment_kernel.models import PaymentMethod
from payment_kernel.selectors.audit_selector import AuditSelector
from payment_kernel.selectors.check_selector import CheckSelector
from payment_kernel.selectors.statement_selector import StatementSelector
from payment_kernel.services.payment_commands import PaymentCommandService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

DEFAULT_TEST_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("PAYMENT_KERNEL_TEST_DATABASE_URL", DEFAULT_TEST_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, commands):
            commands.add_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_added" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payment_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (engine + tables once per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the whole test session."""
    eng = init_engine_from_url(get_database_url(), pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables (and seed payment methods) once per session."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _delete_all_rows(engine) -> None:
    """
    Remove test data, keeping the built-in payment methods.

    Rows are deleted child tables first; methods added by a test are removed.
    """
    builtin = [spec.code for spec in DEFAULT_PAYMENT_METHODS]
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            if table.name == PaymentMethod.__tablename__:
                conn.execute(delete(table).where(table.c.code.not_in(builtin)))
            else:
                conn.execute(delete(table))


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Database session for one test.

    The command facade commits for real; isolation comes from deleting every
    row at teardown.
    """
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()
        _delete_all_rows(db_engine)


@pytest.fixture
def on_postgres(db_engine) -> bool:
    return is_postgres()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """
    Tracked session factory for tests that run commands in parallel threads.

    PostgreSQL only: SQLite shares a single connection between sessions.
    On teardown every tracked session is rolled back and closed, then the
    data is deleted.
    """
    if not is_postgres():
        pytest.skip("requires PostgreSQL (set PAYMENT_KERNEL_TEST_DATABASE_URL)")

    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("pg_session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True
    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Clock pinned to 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def config() -> ReconciliationConfig:
    return ReconciliationConfig()


@pytest.fixture
def commands(session, config, deterministic_clock) -> PaymentCommandService:
    """Committing command facade over the test session."""
    return PaymentCommandService(session, config, clock=deterministic_clock)


@pytest.fixture
def statements(session) -> StatementSelector:
    return StatementSelector(session)


@pytest.fixture
def check_selector(session) -> CheckSelector:
    return CheckSelector(session)


@pytest.fixture
def auditor(session, config) -> AuditSelector:
    return AuditSelector(session, config)


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def project(commands, test_actor_id):
    """Project with 20 apartments, 10 garages and 5 lots."""
    return commands.create_project(
        "Résidence Atlas",
        test_actor_id,
        localisation="Casablanca",
        societe="Atlas Immobilier",
        nombre_appartements=20,
        nombre_garages=10,
        nombre_lots=5,
    )


@pytest.fixture
def make_sale(commands, project, test_actor_id) -> Callable:
    """
    Factory creating sales in ``project``.

    Unit numbers are generated (A-1, A-2, ...) unless given.
    """
    numbers = count(1)

    def _make(
        prix_total: Decimal = Decimal("500000"),
        type_propriete: str = "appartement",
        unite_numero: str | None = None,
        advance: PaymentInput | None = None,
        project_id: UUID | None = None,
    ):
        return commands.create_sale(
            project_id or project.id,
            test_actor_id,
            type_propriete=type_propriete,
            unite_numero=unite_numero or f"A-{next(numbers)}",
            client_nom="Client Test",
            prix_total=prix_total,
            advance=advance,
        )

    return _make


@pytest.fixture
def sale(make_sale):
    """Apartment sale at 500 000 with no payment."""
    return make_sale()


@pytest.fixture
def make_expense(commands, project, test_actor_id) -> Callable:
    def _make(montant_total: Decimal = Decimal("80000"), nom: str = "Gros oeuvre", **fields):
        return commands.create_expense(project.id, nom, montant_total, test_actor_id, **fields)

    return _make


@pytest.fixture
def expense(make_expense):
    return make_expense()


# =============================================================================
# Payment helpers
# =============================================================================


def cash(amount, declare=None, non_declare=None, payment_date: date | None = None) -> PaymentInput:
    """Cash payment; declared pair defaults to fully declared."""
    return PaymentInput(
        amount=Decimal(str(amount)),
        method="espece",
        payment_date=payment_date,
        splits=SplitInput(
            montant_declare=None if declare is None else Decimal(str(declare)),
            montant_non_declare=None if non_declare is None else Decimal(str(non_declare)),
        ),
    )


def mixed(amount, declare, non_declare, espece, cheque, checks=()) -> PaymentInput:
    """cheque_espece payment with both pairs explicit."""
    return PaymentInput(
        amount=Decimal(str(amount)),
        method="cheque_espece",
        splits=SplitInput(
            montant_declare=Decimal(str(declare)),
            montant_non_declare=Decimal(str(non_declare)),
            montant_espece=Decimal(str(espece)),
            montant_cheque=Decimal(str(cheque)),
        ),
        checks=tuple(checks),
    )


def check_input(numero: str, montant, issuer: str = "Banque Populaire", **fields) -> CheckInput:
    return CheckInput(
        numero_cheque=numero,
        montant=Decimal(str(montant)),
        date_emission=fields.pop("date_emission", date(2024, 1, 1)),
        nom_emetteur=issuer,
        **fields,
    )


@pytest.fixture
def payments():
    """Payment input helpers: ``payments.cash``, ``payments.mixed``, ``payments.check``."""
    return SimpleNamespace(cash=cash, mixed=mixed, check=check_input)
