# app/stores.py
import logging
import time
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import OperationContext, SessionFactory, unit_of_work
from . import crud, models, schemas
from .exceptions import (
    AccessDenied,
    DuplicateName,
    InvalidArgument,
    NoResults,
    NotFound,
    RecordNotFound,
    StoreUnavailable,
)
from .gateway import AuthenticationGateway
from .policy import can_change_role, can_modify_password, can_modify_record, is_password_change_requested
from .security import PasswordVerifier, Principal

logger = logging.getLogger(__name__)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _bounded(page_request: schemas.PageRequest | None, columns: dict, max_page_size: int) -> schemas.PageRequest:
    """Validates the sort column and caps the page size."""
    page_request = page_request or schemas.PageRequest()
    if page_request.sort not in columns:
        raise InvalidArgument(f"Cannot sort by '{page_request.sort}'")
    if page_request.size > max_page_size:
        page_request = page_request.model_copy(update={"size": max_page_size})
    return page_request


class _Store:
    def __init__(self, session_factory: SessionFactory, timeout: float | None = None, max_page_size: int = 100):
        self.session_factory = session_factory
        self.timeout = timeout
        self.max_page_size = max_page_size

    def _unit(self, context: OperationContext | None):
        return unit_of_work(self.session_factory, context or OperationContext(timeout=self.timeout))


class CredentialStore(_Store):
    """Persists service records and enforces case-insensitive name uniqueness."""

    def find_by_name(self, name: str | None, context: OperationContext | None = None) -> schemas.ServiceRecord:
        if _is_blank(name):
            raise InvalidArgument("Cannot match service, null or empty name supplied.")

        with self._unit(context) as db:
            db_service = crud.get_service_by_name(db, name)
            if db_service is None:
                raise NotFound(f"Service '{name.strip()}' does not exist")
            return schemas.ServiceRecord.model_validate(db_service)

    def create(
        self,
        name: str | None,
        password_hash: str | None,
        role: models.Role = models.Role.READ,
        context: OperationContext | None = None,
    ) -> schemas.Service:
        if _is_blank(name):
            raise InvalidArgument("No name supplied, can not create new service")
        if _is_blank(password_hash):
            raise InvalidArgument("No password supplied, can not create new service")

        with self._unit(context) as db:
            if crud.get_service_by_name(db, name) is not None:
                logger.warning(f"Attempted to create duplicate service: {name.strip()}")
                raise DuplicateName()
            try:
                db_service = crud.create_service(db, name, password_hash, models.Role(role), int(time.time()))
            except IntegrityError as e:
                # Lost a race with a concurrent create of the same name
                raise DuplicateName() from e
            service = schemas.Service.model_validate(db_service)

        logger.info(f"Service '{service.name}' created successfully with ID {service.id}.")
        return service

    def update(self, record: schemas.ServiceRecord, context: OperationContext | None = None) -> schemas.Service:
        """Replaces the stored record with the same id. created_at is kept."""
        with self._unit(context) as db:
            service = self._replace(db, record)
        logger.info(f"Service {service.id} updated")
        return service

    def _replace(self, db: Session, record: schemas.ServiceRecord) -> schemas.Service:
        if _is_blank(record.name):
            raise InvalidArgument("No name supplied, can't figure out which service to update.")
        if _is_blank(record.password_hash):
            raise InvalidArgument("No password hash supplied, can not update service")

        db_service = crud.get_service(db, record.id, for_update=True)
        if db_service is None:
            raise RecordNotFound(f"No service with id {record.id}")

        normalized = crud.normalize_name(record.name)
        if normalized != db_service.normalized_name:
            clash = crud.get_service_by_name(db, record.name)
            if clash is not None and clash.id != db_service.id:
                raise DuplicateName()

        db_service.name = record.name.strip()
        db_service.normalized_name = normalized
        db_service.password_hash = record.password_hash
        db_service.role = models.Role(record.role)
        try:
            db.flush()
        except IntegrityError as e:
            raise DuplicateName() from e
        return schemas.Service.model_validate(db_service)

    def list_all(
        self, page_request: schemas.PageRequest | None = None, context: OperationContext | None = None
    ) -> schemas.Page[schemas.Service]:
        """
        Returns one page of services ordered by id unless another sort is given.

        Raises NoResults when the page holds no services, including an empty
        store and a page past the end.
        """
        page_request = _bounded(page_request, crud.SERVICE_SORT_COLUMNS, self.max_page_size)

        with self._unit(context) as db:
            rows, total = crud.get_services(db, page_request)
            if not rows:
                raise NoResults()
            items = [schemas.Service.model_validate(row) for row in rows]

        return schemas.Page[schemas.Service](items=items, total=total, page=page_request.page, size=page_request.size)

    def update_service(
        self,
        actor: Principal,
        request: schemas.ServiceUpdateRequest,
        verifier: PasswordVerifier,
        context: OperationContext | None = None,
    ) -> schemas.Service:
        """
        Applies rename, password and role changes requested by ``actor``.

        The actor must be the target itself or hold the FULL role. A
        self-service password change also needs the current password.
        """
        can_modify_record(actor.name, actor.role, request.target_name)

        with self._unit(context) as db:
            db_service = crud.get_service_by_name(db, request.target_name, for_update=True)
            if db_service is None:
                raise NotFound(f"No service found with name '{request.target_name.strip()}', can not update unknown service")
            record = schemas.ServiceRecord.model_validate(db_service)

            changes = {}
            if request.new_name is not None:
                if _is_blank(request.new_name):
                    raise InvalidArgument("New service name may not be blank")
                changes["name"] = request.new_name.strip()

            # Salted hashes never compare equal, so an unchanged password is
            # detected by verifying it against the stored hash
            if not _is_blank(request.new_password) and not verifier.verify(request.new_password, record.password_hash):
                new_hash = verifier.hash(request.new_password)
                if is_password_change_requested(new_hash, record.password_hash):
                    allowed = can_modify_password(
                        record.name, actor.role, request.old_password, record.password_hash, verifier.verify
                    )
                    if not allowed:
                        logger.warning(f"Service '{actor.name}' not permitted to change password of '{record.name}'")
                        raise AccessDenied("Current password missing or incorrect")
                    changes["password_hash"] = new_hash

            if request.role is not None:
                can_change_role(actor.role, record.role, request.role)
                changes["role"] = request.role

            service = self._replace(db, record.model_copy(update=changes))

        logger.info(f"Service '{actor.name}' updated service '{record.name}' ({', '.join(sorted(changes)) or 'no changes'})")
        return service


class SettingsStore(_Store):
    """Settings namespaced by their owning service."""

    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: AuthenticationGateway,
        timeout: float | None = None,
        max_page_size: int = 100,
    ):
        super().__init__(session_factory, timeout=timeout, max_page_size=max_page_size)
        self.gateway = gateway

    def get(
        self,
        owner_name: str | None,
        owner_password: str | None,
        setting_name: str | None,
        context: OperationContext | None = None,
    ) -> schemas.Setting:
        """Fetches one of the owner's settings and marks it as used."""
        if _is_blank(setting_name):
            raise InvalidArgument("No setting name supplied")

        with self._unit(context) as db:
            owner = self.gateway.resolve(db, owner_name, owner_password)
            db_setting = crud.get_setting(db, owner.id, setting_name.strip())
            if db_setting is None:
                raise NotFound(f"Setting '{setting_name.strip()}' not found")
            db_setting.last_used_at = datetime.now(timezone.utc)
            db.flush()
            return schemas.Setting.model_validate(db_setting)

    def list_for_owner(
        self,
        owner_name: str | None,
        owner_password: str | None,
        page_request: schemas.PageRequest | None = None,
        context: OperationContext | None = None,
    ) -> schemas.Page[schemas.Setting]:
        """Lists the owner's settings. An owner without settings gets an empty page."""
        page_request = _bounded(page_request, crud.SETTING_SORT_COLUMNS, self.max_page_size)

        with self._unit(context) as db:
            owner = self.gateway.resolve(db, owner_name, owner_password)
            rows, total = crud.get_settings_for_owner(db, owner.id, page_request)
            items = [schemas.Setting.model_validate(row) for row in rows]

        return schemas.Page[schemas.Setting](items=items, total=total, page=page_request.page, size=page_request.size)

    def upsert(
        self, owner_id: int, name: str | None, value: str | None, context: OperationContext | None = None
    ) -> schemas.Setting:
        with self._unit(context) as db:
            return self._upsert(db, owner_id, name, value)

    def _upsert(self, db: Session, owner_id: int, name: str | None, value: str | None) -> schemas.Setting:
        if _is_blank(name):
            raise InvalidArgument("No setting name supplied")
        if value is None:
            raise InvalidArgument("No setting value supplied")
        name = name.strip()

        if crud.get_service(db, owner_id) is None:
            raise RecordNotFound(f"No service with id {owner_id}")

        db_setting = crud.get_setting(db, owner_id, name)
        if db_setting is not None:
            db_setting.value = value
            db.flush()
            logger.info(f"Setting '{name}' updated for service {owner_id}")
        else:
            try:
                db_setting = crud.create_setting(db, owner_id, name, value)
            except IntegrityError as e:
                raise StoreUnavailable(f"Concurrent write on setting '{name}', retry") from e
            logger.info(f"Setting '{name}' created for service {owner_id}")
        return schemas.Setting.model_validate(db_setting)

    def delete(self, owner_id: int, name: str | None, context: OperationContext | None = None) -> bool:
        """Removes a setting. Returns False when nothing matched."""
        with self._unit(context) as db:
            return self._delete(db, owner_id, name)

    def _delete(self, db: Session, owner_id: int, name: str | None) -> bool:
        if _is_blank(name):
            raise InvalidArgument("No setting name supplied")
        removed = crud.delete_setting(db, owner_id, name.strip()) > 0
        if removed:
            logger.info(f"Setting '{name.strip()}' deleted for service {owner_id}")
        return removed

    def _owner_for(self, db: Session, actor: Principal, owner_name: str | None) -> models.Service:
        can_modify_record(actor.name, actor.role, owner_name)
        owner = crud.get_service_by_name(db, owner_name)
        if owner is None:
            raise NotFound(f"Service '{owner_name.strip()}' does not exist")
        return owner

    def upsert_as(
        self,
        actor: Principal,
        owner_name: str | None,
        name: str | None,
        value: str | None,
        context: OperationContext | None = None,
    ) -> schemas.Setting:
        """Writes a setting for ``owner_name``, acting as ``actor``."""
        with self._unit(context) as db:
            owner = self._owner_for(db, actor, owner_name)
            return self._upsert(db, owner.id, name, value)

    def delete_as(
        self, actor: Principal, owner_name: str | None, name: str | None, context: OperationContext | None = None
    ) -> bool:
        with self._unit(context) as db:
            owner = self._owner_for(db, actor, owner_name)
            return self._delete(db, owner.id, name)
