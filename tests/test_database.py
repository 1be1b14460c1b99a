"""
Tests for the unit of work: timeouts, cancellation and error classification.
"""

import sqlite3
import threading
import time

import pytest

from settings_service import database
from settings_service.app import crud
from settings_service.app.exceptions import NotFound, OperationCancelled, StoreUnavailable
from settings_service.app.models import Role
from settings_service.app.stores import CredentialStore
from settings_service.database import OperationContext, unit_of_work


class RecordingFactory:
    """Session factory that counts how often a session was requested"""

    def __init__(self, factory):
        self.factory = factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.factory()


@pytest.mark.unit
class TestOperationContext:
    def test_no_timeout_never_expires(self) -> None:
        context = OperationContext()
        assert context.remaining() is None
        context.check()

    def test_expired_context_raises_store_unavailable(self) -> None:
        with pytest.raises(StoreUnavailable) as exc_info:
            OperationContext(timeout=0).check()
        assert exc_info.value.retryable is True

    def test_cancelled_context(self) -> None:
        event = threading.Event()
        context = OperationContext(cancel_event=event)
        event.set()

        assert context.cancelled
        with pytest.raises(OperationCancelled):
            context.check()


@pytest.mark.unit
class TestUnitOfWork:
    def test_cancelled_before_start_issues_no_call(self, session_factory) -> None:
        factory = RecordingFactory(session_factory)
        context = OperationContext()
        context.cancel()

        with pytest.raises(OperationCancelled):
            CredentialStore(factory).find_by_name("svcA", context=context)

        assert factory.calls == 0

    def test_expired_before_start_issues_no_call(self, session_factory) -> None:
        factory = RecordingFactory(session_factory)

        with pytest.raises(StoreUnavailable):
            CredentialStore(factory, timeout=0).find_by_name("svcA")

        assert factory.calls == 0

    def test_cancel_mid_operation_rolls_back(self, session_factory, credentials) -> None:
        context = OperationContext()

        with pytest.raises(OperationCancelled):
            with unit_of_work(session_factory, context) as db:
                crud.create_service(db, "svcA", "h", Role.READ, 0)
                context.cancel()
                crud.get_service_by_name(db, "svcA")

        with pytest.raises(NotFound):
            credentials.find_by_name("svcA")

    def test_cancel_before_flush(self, session_factory, credentials) -> None:
        context = OperationContext()

        with pytest.raises(OperationCancelled):
            with unit_of_work(session_factory, context) as db:
                context.cancel()
                crud.create_service(db, "svcA", "h", Role.READ, 0)

        with pytest.raises(NotFound):
            credentials.find_by_name("svcA")

    def test_commits_on_success(self, session_factory, credentials) -> None:
        with unit_of_work(session_factory) as db:
            crud.create_service(db, "svcA", "h", Role.READ, 0)

        assert credentials.find_by_name("svcA").name == "svcA"

    def test_unreachable_database_is_store_unavailable(self, tmp_path) -> None:
        missing = tmp_path / "no-such-dir" / "settings.db"
        engine = database.build_engine(f"sqlite:///{missing}")
        store = CredentialStore(database.make_session_factory(engine))

        with pytest.raises(StoreUnavailable):
            store.find_by_name("svcA")

        engine.dispose()


@pytest.mark.unit
class TestLockedDatabase:
    """A caller's timeout bounds the wait on a locked SQLite file"""

    @pytest.fixture
    def file_engine(self, tmp_path):
        path = tmp_path / "settings.db"
        engine = database.build_engine(f"sqlite:///{path}", timeout=3.0)
        database.create_db_and_tables(bind=engine)
        yield engine, path
        engine.dispose()

    @pytest.fixture
    def locked(self, file_engine):
        engine, path = file_engine
        holder = sqlite3.connect(str(path), isolation_level=None)
        holder.execute("BEGIN EXCLUSIVE")
        yield engine
        holder.execute("ROLLBACK")
        holder.close()

    def test_caller_timeout_beats_engine_timeout(self, locked) -> None:
        store = CredentialStore(database.make_session_factory(locked))

        started = time.monotonic()
        with pytest.raises(StoreUnavailable):
            store.create("svcA", "h", context=OperationContext(timeout=0.2))
        elapsed = time.monotonic() - started

        assert elapsed < 1.5

    def test_engine_default_restored_without_caller_timeout(self, file_engine) -> None:
        engine, _ = file_engine
        factory = database.make_session_factory(engine)

        with unit_of_work(factory, OperationContext(timeout=0.5)) as db:
            pass
        with unit_of_work(factory) as db:
            busy_ms = db.connection().exec_driver_sql("PRAGMA busy_timeout").scalar()

        assert busy_ms == 3000
