"""
Module: ledger_kernel.db.engine
Responsibility: The explicitly constructed store handle -- SQLAlchemy engine,
    session factory and transactional scope.  One ``LedgerStore`` is built at
    process start and passed to every component that needs the database;
    there is no module-level connection state.
Architecture position: Kernel > DB.  May import from db/base.py.

Invariants enforced:
    - Every multi-statement mutation runs inside ``session_scope()``, which
      commits on success and rolls back on any exception.
    - SQLite connections run in WAL mode with foreign keys on, and every
      transaction starts with ``BEGIN IMMEDIATE`` so concurrent writers
      queue on ``busy_timeout`` instead of failing on lock upgrade.

Failure modes:
    - StorageFailureError wraps any SQLAlchemyError raised inside
      ``session_scope()``; the transaction has been rolled back when the
      caller sees it.
    - Domain exceptions raised inside the scope are re-raised unchanged
      after rollback.
"""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_kernel.exceptions import StorageFailureError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

DEFAULT_DATABASE_URL = "sqlite:///retired.db"


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def _install_sqlite_hooks(engine: Engine, busy_timeout_ms: int) -> None:
    """Pragmas plus explicit BEGIN handling for the pysqlite driver.

    pysqlite's own transaction handling defers BEGIN and breaks SAVEPOINT;
    the driver's autocommit is switched off and SQLAlchemy emits BEGIN
    itself.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class LedgerStore:
    """
    Scoped database handle.

    Contract:
        Owns one Engine and one session factory.  Components receive the
        store (or a Session opened from it) by injection.  ``close()``
        disposes the pool; the store is also a context manager.

    Guarantees:
        - ``session_scope()`` is all-or-nothing.
        - ``create_tables()`` is idempotent.
    """

    def __init__(
        self,
        database_url: str = DEFAULT_DATABASE_URL,
        *,
        echo: bool = False,
        busy_timeout_ms: int = 10_000,
    ):
        self.database_url = database_url
        engine_kwargs: dict[str, Any] = {"echo": echo}
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(database_url):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True

        self._engine = create_engine(database_url, **engine_kwargs)
        if is_sqlite:
            _install_sqlite_hooks(self._engine, busy_timeout_ms)

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._closed = False

        logger.info(
            "store_initialized",
            extra={"dialect": self._engine.dialect.name, "echo": echo},
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def create_tables(self) -> None:
        """Create every ledger table that does not exist yet."""
        from ledger_kernel.db.base import Base
        import ledger_kernel.models  # noqa: F401  (registers tables)

        Base.metadata.create_all(self._engine)
        logger.info(
            "tables_created",
            extra={"tables": sorted(Base.metadata.tables.keys())},
        )

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from ledger_kernel.db.base import Base
        import ledger_kernel.models  # noqa: F401

        Base.metadata.drop_all(self._engine)

    def close(self) -> None:
        if not self._closed:
            self._engine.dispose()
            self._closed = True
            logger.info("store_closed")

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session(self) -> Session:
        """Open a new, caller-managed session."""
        return self._session_factory()

    @contextmanager
    def session_scope(self, operation: str = "transaction") -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with store.session_scope("append_event") as session:
                session.add(entity)
                # Commits on successful exit, rolls back on exception

        Raises:
            StorageFailureError: the database rejected the transaction.
        """
        session = self._session_factory()
        logger.debug("transaction_started", extra={"operation": operation})
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed", extra={"operation": operation})
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            raise StorageFailureError(operation, str(exc)) from exc
        except BaseException:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            raise
        finally:
            session.close()
