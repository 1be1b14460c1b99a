"""
Pytest configuration and fixtures for settings service tests.

Each test gets its own in-memory SQLite database; nothing outside the
process is required.
"""
import os

# Must be set before settings_service.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool

from settings_service import database
from settings_service.app.gateway import AuthenticationGateway
from settings_service.app.models import Role
from settings_service.app.security import Argon2PasswordVerifier
from settings_service.app.stores import CredentialStore, SettingsStore


@pytest.fixture
def engine():
    """In-memory database shared across threads for the duration of a test"""
    engine = database.build_engine("sqlite://", poolclass=StaticPool)
    database.create_db_and_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return database.make_session_factory(engine)


@pytest.fixture(scope="session")
def verifier() -> Argon2PasswordVerifier:
    """Cheap Argon2 parameters so hashing does not dominate test time"""
    return Argon2PasswordVerifier(time_cost=1, memory_cost=1024)


@pytest.fixture
def gateway(session_factory, verifier) -> AuthenticationGateway:
    return AuthenticationGateway(session_factory, verifier)


@pytest.fixture
def credentials(session_factory) -> CredentialStore:
    return CredentialStore(session_factory, max_page_size=50)


@pytest.fixture
def settings_store(session_factory, gateway) -> SettingsStore:
    return SettingsStore(session_factory, gateway, max_page_size=50)


@pytest.fixture
def register(credentials, verifier):
    """Register a service with a hashed password"""

    def _register(name: str, password: str, role: Role = Role.READ):
        return credentials.create(name, verifier.hash(password), role)

    return _register
