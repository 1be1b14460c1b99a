# main.py
import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from . import database
from .app import schemas
from .app.exceptions import (
    AccessDenied,
    AuthenticationFailed,
    DuplicateName,
    InvalidArgument,
    NoResults,
    NotFound,
    OperationCancelled,
    SettingsServiceError,
    StoreUnavailable,
)
from .app.gateway import AuthenticationGateway
from .app.models import Role
from .app.security import Argon2PasswordVerifier, PasswordVerifier, Principal
from .app.stores import CredentialStore, SettingsStore
from .config import get_config

config = get_config()

# --- Logging Setup ---
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

# --- Create DB Tables on Startup ---
# In production, use migrations (Alembic). For simplicity here, create on start.
# It's safe because `create_all` doesn't recreate existing tables.
database.create_db_and_tables()


# --- FastAPI App Initialization ---
app = FastAPI(
    title="Settings Service",
    description="Register services and store named settings scoped to each service.",
    version="1.0.0",
)

security = HTTPBasic(realm="settings-service")
optional_security = HTTPBasic(realm="settings-service", auto_error=False)


# --- Error Translation ---
ERROR_STATUS = [
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (NoResults, status.HTTP_404_NOT_FOUND),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (DuplicateName, status.HTTP_409_CONFLICT),
    (AuthenticationFailed, status.HTTP_401_UNAUTHORIZED),
    (AccessDenied, status.HTTP_403_FORBIDDEN),
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (OperationCancelled, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(error: SettingsServiceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(SettingsServiceError)
async def settings_service_error_handler(request: Request, exc: SettingsServiceError):
    status_code = status_for(exc)
    headers = {}
    if isinstance(exc, AuthenticationFailed):
        headers["WWW-Authenticate"] = 'Basic realm="settings-service"'
    if exc.retryable:
        headers["Retry-After"] = "1"

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind},
        headers=headers,
    )


# --- Dependencies ---
@lru_cache
def get_verifier() -> PasswordVerifier:
    return Argon2PasswordVerifier(
        time_cost=config.password_hash_time_cost,
        memory_cost=config.password_hash_memory_cost,
    )


def get_gateway(
    session_factory: database.SessionFactory = Depends(database.get_session_factory),
    verifier: PasswordVerifier = Depends(get_verifier),
) -> AuthenticationGateway:
    return AuthenticationGateway(session_factory, verifier, timeout=config.store_timeout_seconds)


def get_credential_store(
    session_factory: database.SessionFactory = Depends(database.get_session_factory),
) -> CredentialStore:
    return CredentialStore(session_factory, timeout=config.store_timeout_seconds, max_page_size=config.max_page_size)


def get_settings_store(
    session_factory: database.SessionFactory = Depends(database.get_session_factory),
    gateway: AuthenticationGateway = Depends(get_gateway),
) -> SettingsStore:
    return SettingsStore(
        session_factory, gateway, timeout=config.store_timeout_seconds, max_page_size=config.max_page_size
    )


def get_actor(
    credentials: HTTPBasicCredentials = Depends(security),
    gateway: AuthenticationGateway = Depends(get_gateway),
) -> Principal:
    """Authenticates the caller from HTTP Basic credentials."""
    return gateway.authenticate_principal(credentials.username, credentials.password)


def page_request(
    page: int = Query(0, ge=0),
    size: int | None = Query(None, ge=1, le=config.max_page_size),
    sort: str = Query("id"),
    direction: schemas.SortDirection = Query(schemas.SortDirection.asc),
) -> schemas.PageRequest:
    return schemas.PageRequest(page=page, size=size or config.default_page_size, sort=sort, direction=direction)


# --- Service Endpoints ---

@app.post(
    "/services",
    response_model=schemas.Service,
    status_code=status.HTTP_201_CREATED,
    tags=["Services"],
    summary="Register a new service",
)
def create_service(
    service: schemas.ServiceCreate,
    credentials: HTTPBasicCredentials | None = Depends(optional_security),
    gateway: AuthenticationGateway = Depends(get_gateway),
    store: CredentialStore = Depends(get_credential_store),
    verifier: PasswordVerifier = Depends(get_verifier),
):
    """
    Registers a service. Anyone may register a READ service; creating a
    FULL service requires the credentials of an existing FULL service.
    """
    if service.role is Role.FULL:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Credentials required to create a FULL service",
                headers={"WWW-Authenticate": 'Basic realm="settings-service"'},
            )
        actor = gateway.authenticate_principal(credentials.username, credentials.password)
        if not actor.has_full_role:
            raise AccessDenied("Only services with the FULL role may create FULL services")

    logger.info(f"Creating new service registration: {service.name}")
    return store.create(service.name, verifier.hash(service.password), service.role)


@app.get(
    "/services",
    response_model=schemas.Page[schemas.Service],
    tags=["Services"],
    summary="List registered services",
)
def list_services(
    paging: schemas.PageRequest = Depends(page_request),
    actor: Principal = Depends(get_actor),
    store: CredentialStore = Depends(get_credential_store),
):
    return store.list_all(paging)


@app.get(
    "/services/{service_name}",
    response_model=schemas.Service,
    tags=["Services"],
    summary="Fetch a service by name",
)
def get_service(
    service_name: str,
    actor: Principal = Depends(get_actor),
    store: CredentialStore = Depends(get_credential_store),
):
    return store.find_by_name(service_name).public()


@app.put(
    "/services/{service_name}",
    response_model=schemas.Service,
    tags=["Services"],
    summary="Update a service's name, password or role",
)
def update_service(
    service_name: str,
    body: schemas.ServiceUpdate,
    actor: Principal = Depends(get_actor),
    store: CredentialStore = Depends(get_credential_store),
    verifier: PasswordVerifier = Depends(get_verifier),
):
    """
    A service may update itself; FULL services may update any service.
    Changing your own password requires `old_password`.
    """
    request = schemas.ServiceUpdateRequest(
        target_name=service_name,
        new_name=body.name,
        new_password=body.password,
        old_password=body.old_password,
        role=body.role,
    )
    return store.update_service(actor, request, verifier)


# --- Setting Endpoints (caller's own namespace) ---

@app.get(
    "/settings",
    response_model=schemas.Page[schemas.Setting],
    tags=["Settings"],
    summary="List the caller's settings",
)
def list_settings(
    paging: schemas.PageRequest = Depends(page_request),
    credentials: HTTPBasicCredentials = Depends(security),
    store: SettingsStore = Depends(get_settings_store),
):
    return store.list_for_owner(credentials.username, credentials.password, paging)


@app.get(
    "/settings/{setting_name}",
    response_model=schemas.Setting,
    tags=["Settings"],
    summary="Fetch one of the caller's settings",
)
def get_setting(
    setting_name: str,
    credentials: HTTPBasicCredentials = Depends(security),
    store: SettingsStore = Depends(get_settings_store),
):
    return store.get(credentials.username, credentials.password, setting_name)


@app.put(
    "/settings/{setting_name}",
    response_model=schemas.Setting,
    tags=["Settings"],
    summary="Create or replace one of the caller's settings",
)
def put_setting(
    setting_name: str,
    body: schemas.SettingWrite,
    actor: Principal = Depends(get_actor),
    store: SettingsStore = Depends(get_settings_store),
):
    return store.upsert(actor.id, setting_name, body.value)


@app.delete(
    "/settings/{setting_name}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Settings"],
    summary="Delete one of the caller's settings",
)
def delete_setting(
    setting_name: str,
    actor: Principal = Depends(get_actor),
    store: SettingsStore = Depends(get_settings_store),
):
    if not store.delete(actor.id, setting_name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Setting '{setting_name}' not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Setting Endpoints (acting on behalf of another service) ---

@app.put(
    "/services/{service_name}/settings/{setting_name}",
    response_model=schemas.Setting,
    tags=["Settings"],
    summary="Create or replace a setting owned by another service (FULL only)",
)
def put_setting_for_service(
    service_name: str,
    setting_name: str,
    body: schemas.SettingWrite,
    actor: Principal = Depends(get_actor),
    store: SettingsStore = Depends(get_settings_store),
):
    return store.upsert_as(actor, service_name, setting_name, body.value)


@app.delete(
    "/services/{service_name}/settings/{setting_name}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Settings"],
    summary="Delete a setting owned by another service (FULL only)",
)
def delete_setting_for_service(
    service_name: str,
    setting_name: str,
    actor: Principal = Depends(get_actor),
    store: SettingsStore = Depends(get_settings_store),
):
    if not store.delete_as(actor, service_name, setting_name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Setting '{setting_name}' not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Root Redirect ---
@app.get("/", include_in_schema=False)
async def root_redirect():
    return RedirectResponse(url="/docs")
