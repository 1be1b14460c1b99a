# app/gateway.py
import logging
from functools import lru_cache

from sqlalchemy.orm import Session

from ..database import OperationContext, SessionFactory, unit_of_work
from . import crud, models, schemas
from .exceptions import AuthenticationFailed, InvalidArgument
from .security import PasswordVerifier, Principal

logger = logging.getLogger(__name__)


@lru_cache(maxsize=8)
def _dummy_hash(verifier: PasswordVerifier) -> str:
    """Hash verified against when the name is unknown, made once per verifier."""
    return verifier.hash("settings-service-unknown-name")


class AuthenticationGateway:
    """Resolves a (name, password) pair to an authenticated service."""

    def __init__(self, session_factory: SessionFactory, verifier: PasswordVerifier, timeout: float | None = None):
        self.session_factory = session_factory
        self.verifier = verifier
        self.timeout = timeout

    def _context(self, context: OperationContext | None) -> OperationContext:
        return context or OperationContext(timeout=self.timeout)

    def resolve(self, db: Session, name: str | None, password: str | None) -> models.Service:
        """
        Authenticates inside an existing unit of work and returns the ORM row.

        Unknown names and wrong passwords raise the same AuthenticationFailed.
        """
        if not name or not name.strip():
            raise InvalidArgument("No name supplied, can not authenticate")
        if not password or not password.strip():
            raise InvalidArgument("No password supplied, can not authenticate")

        db_service = crud.get_service_by_name(db, name)
        if db_service is None:
            # Unknown names cost one verify, the same as a wrong password
            self.verifier.verify(password, _dummy_hash(self.verifier))
            logger.warning(f"Authentication failed for service '{name.strip()}'")
            raise AuthenticationFailed()

        if not self.verifier.verify(password, db_service.password_hash):
            logger.warning(f"Authentication failed for service '{name.strip()}'")
            raise AuthenticationFailed()

        return db_service

    def authenticate(self, name: str | None, password: str | None, context: OperationContext | None = None) -> schemas.Service:
        with unit_of_work(self.session_factory, self._context(context)) as db:
            db_service = self.resolve(db, name, password)
            service = schemas.Service.model_validate(db_service)
        logger.info(f"Service '{service.name}' authenticated")
        return service

    def authenticate_principal(self, name: str | None, password: str | None, context: OperationContext | None = None) -> Principal:
        return self.principal_for(self.authenticate(name, password, context))

    @staticmethod
    def principal_for(service: schemas.Service) -> Principal:
        return Principal.from_service(service)
