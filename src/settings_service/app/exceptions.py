"""
Error kinds raised by the settings service core.

Every failure that leaves a store, the gateway or the access policy is one of
the classes below. Raw driver or SQLAlchemy errors are classified inside the
unit of work before they reach a caller (see ``database.unit_of_work``).

Only ``StoreUnavailable`` is marked retryable; every other kind is terminal
for the current request.

Usage:
    from settings_service.app.exceptions import AccessDenied, NotFound

    try:
        record = credentials.find_by_name(name)
    except NotFound:
        logger.info(f"Service '{name}' not registered")
"""

from typing import Optional


class SettingsServiceError(Exception):
    """Base class for all classified core errors."""

    kind = "error"
    retryable = False
    default_message = "Settings service error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidArgument(SettingsServiceError, ValueError):
    """Malformed or missing input; the caller can correct the request."""

    kind = "invalid_argument"
    default_message = "Invalid argument"


class InvalidTarget(InvalidArgument):
    """The service targeted by a mutation was not specified."""

    kind = "invalid_target"
    default_message = "Service to be modified not specified"


class NotFound(SettingsServiceError):
    kind = "not_found"
    default_message = "Not found"


class RecordNotFound(NotFound):
    kind = "record_not_found"
    default_message = "Record not found"


class DuplicateName(SettingsServiceError):
    kind = "duplicate_name"
    default_message = "A service with the supplied name already exists"


class AuthenticationFailed(SettingsServiceError):
    """
    Credentials did not resolve to a service.

    The message is fixed so that an unknown name and a wrong password are
    indistinguishable to the caller.
    """

    kind = "authentication_failed"
    default_message = "Invalid credentials"

    def __init__(self) -> None:
        super().__init__(self.default_message)


class AccessDenied(SettingsServiceError):
    kind = "access_denied"
    default_message = "Not allowed to modify the requested service"


class NoResults(SettingsServiceError):
    kind = "no_results"
    default_message = "No results found"


class StoreUnavailable(SettingsServiceError):
    """Timeout or transport failure talking to the database."""

    kind = "store_unavailable"
    retryable = True
    default_message = "Store unavailable"


class OperationCancelled(SettingsServiceError):
    """The caller cancelled the operation before the next store call."""

    kind = "operation_cancelled"
    default_message = "Operation cancelled"
