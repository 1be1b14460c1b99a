# database.py
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .app.exceptions import InvalidArgument, OperationCancelled, SettingsServiceError, StoreUnavailable
from .config import get_config

logger = logging.getLogger(__name__)

CONTEXT_KEY = "operation_context"
BUSY_TIMEOUT_KEY = "busy_timeout_ms"

SessionFactory = Callable[[], Session]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FOREIGN KEY clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _remember_busy_timeout(default_ms: int):
    def listener(dbapi_connection, connection_record):
        connection_record.info[BUSY_TIMEOUT_KEY] = default_ms

    return listener


def build_engine(database_url: str, timeout: float | None = None, **kwargs) -> Engine:
    """Creates an engine configured for per-record serializable access."""
    if database_url.startswith("sqlite"):
        # Needed for SQLite to allow usage across threads (FastAPI uses threads)
        connect_args = {"check_same_thread": False}
        if timeout is not None:
            connect_args["timeout"] = timeout
        kwargs.setdefault("connect_args", connect_args)
    else:
        kwargs.setdefault("isolation_level", "SERIALIZABLE")
        if timeout is not None:
            kwargs.setdefault("pool_timeout", timeout)

    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        # sqlite3 waits 5s on a locked database unless told otherwise
        default_ms = int((timeout if timeout is not None else 5.0) * 1000)
        event.listen(engine, "connect", _remember_busy_timeout(default_ms))
    return engine


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


config = get_config()
engine = build_engine(config.database_url, timeout=config.store_timeout_seconds)
SessionLocal = make_session_factory(engine)

Base = declarative_base()


def get_session_factory() -> SessionFactory:
    """Dependency returning the session factory used by the stores."""
    return SessionLocal


def create_db_and_tables(bind: Engine | None = None):
    """Creates database tables based on models."""
    # In production, you'd likely use Alembic for migrations.
    from .app import models  # noqa: F401  registers tables on Base.metadata

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created (if they didn't exist).")


@dataclass
class OperationContext:
    """
    Caller-supplied bounds for one logical operation.

    ``timeout`` is measured from construction; ``cancel_event`` may be set from
    another thread to stop the operation before its next store call.
    """

    timeout: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self) -> float | None:
        if self.timeout is None:
            return None
        return self.timeout - (time.monotonic() - self.started_at)

    def check(self) -> None:
        """Raises if no further store call may be issued."""
        if self.cancelled:
            raise OperationCancelled()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise StoreUnavailable(f"Store call exceeded the {self.timeout}s timeout")


def _context_of(session: Session) -> OperationContext | None:
    return session.info.get(CONTEXT_KEY)


@event.listens_for(Session, "do_orm_execute")
def _check_context_before_execute(orm_execute_state):
    context = _context_of(orm_execute_state.session)
    if context is not None:
        context.check()


@event.listens_for(Session, "before_flush")
def _check_context_before_flush(session, flush_context, instances):
    context = _context_of(session)
    if context is not None:
        context.check()


def _apply_statement_timeout(session: Session, context: OperationContext) -> None:
    remaining = context.remaining()
    dialect = session.get_bind().dialect.name

    if dialect == "sqlite":
        connection = session.connection()
        if remaining is None:
            # Restore the engine default a previous operation may have lowered
            busy_ms = connection.connection.info.get(BUSY_TIMEOUT_KEY)
            if busy_ms is None:
                return
        else:
            busy_ms = max(int(remaining * 1000), 1)
        connection.exec_driver_sql(f"PRAGMA busy_timeout = {busy_ms}")
    elif dialect == "postgresql" and remaining is not None:
        # SET LOCAL does not accept bound parameters
        session.execute(text(f"SET LOCAL statement_timeout = {max(int(remaining * 1000), 1)}"))


@contextmanager
def unit_of_work(session_factory: SessionFactory, context: OperationContext | None = None) -> Iterator[Session]:
    """
    Runs one public operation inside a single session and transaction.

    Commits when the block exits cleanly and rolls back otherwise. SQLAlchemy
    errors escaping the block are classified into core error kinds.
    """
    context = context or OperationContext()
    # A cancelled or expired context never opens a connection
    context.check()

    session = session_factory()
    session.info[CONTEXT_KEY] = context
    try:
        with session.begin():
            _apply_statement_timeout(session, context)
            yield session
    except SettingsServiceError:
        raise
    except IntegrityError as e:
        logger.warning(f"Constraint violation not handled at call site: {e.orig}")
        raise InvalidArgument("Request violates a store constraint") from e
    except DBAPIError as e:
        logger.error(f"Database call failed: {e.orig}")
        raise StoreUnavailable("Database call failed") from e
    except SQLAlchemyError as e:
        logger.exception("Unexpected database error")
        raise StoreUnavailable("Database error") from e
    finally:
        session.info.pop(CONTEXT_KEY, None)
        session.close()
