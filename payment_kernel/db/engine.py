"""
Module: payment_kernel.db.engine
Responsibility: Engine initialisation, session factory and transactional scope
    helpers.  The single place where connection settings are decided.
Architecture position: Kernel > DB.  Imports db/base.py; ``create_tables``
    additionally imports the models and the payment-method catalogue seed.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; writers take explicit row locks
      (SELECT ... FOR UPDATE) on the parent before touching its installments.
    - SQLite (tests, local tooling) gets foreign keys switched on for every
      connection so ON DELETE SET NULL on check links behaves as on PostgreSQL.

Failure modes:
    - RuntimeError if the accessors are called before init_engine_from_url().
"""

import atexit
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from payment_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # Transactions are started by _sqlite_begin so SAVEPOINTs nest
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialise the module-level engine and session factory.

    PostgreSQL URLs get a QueuePool at READ COMMITTED.  SQLite URLs are
    accepted for tests; an in-memory database is shared through a StaticPool
    so every session sees the same schema.

    A second call replaces the first engine.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(url, echo=echo, **kwargs)
        event.listen(_engine, "connect", _configure_sqlite_connection)
        event.listen(_engine, "begin", _sqlite_begin)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    """Current engine; RuntimeError before init_engine_from_url()."""
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """New session bound to the current engine."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """Session factory, for threads that each need their own session."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transactional scope for scripts: commit on normal exit, rollback and
    re-raise on exception, always close.

    Usage:
        with session_scope() as session:
            add_payment_method(session, spec)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """
    Create the schema and seed the payment-method catalogue.

    Safe to call repeatedly: existing tables are kept and seeding only adds
    missing methods.
    """
    from payment_kernel.db.base import Base
    from payment_kernel.db.migrations import seed_payment_methods
    from payment_kernel.models import import_all_models

    engine = get_engine()
    import_all_models()
    Base.metadata.create_all(engine)

    with session_scope() as session:
        added = seed_payment_methods(session)

    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables), "methods_seeded": added},
    )


def drop_tables() -> None:
    """Drop all tables. Testing and local tooling only."""
    from payment_kernel.db.base import Base
    from payment_kernel.models import import_all_models

    import_all_models()
    Base.metadata.drop_all(get_engine())
    logger.info("tables_dropped")


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    """True when the current engine talks to PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
