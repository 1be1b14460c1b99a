"""
Access control decisions for service records.

The record check and the password check are deliberately asymmetric:
``can_modify_record`` raises ``AccessDenied`` so callers can stop with a clear
error, while ``can_modify_password`` answers with a boolean that callers fold
into a larger decision.

All functions are pure; they neither read nor write the store.
"""

import logging
from typing import Callable, Optional

from .exceptions import AccessDenied, InvalidArgument, InvalidTarget
from .models import Role

logger = logging.getLogger(__name__)

VerifyFn = Callable[[str, str], bool]


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _role(value: Role | str) -> Role:
    try:
        return Role(value)
    except ValueError as e:
        raise InvalidArgument(f"Unknown role '{value}'") from e


def _same_name(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    return left.strip().lower() == right.strip().lower()


def can_modify_record(actor_name: Optional[str], actor_role: Role | str, target_name: Optional[str]) -> bool:
    """
    Checks whether the actor may modify the target service's record.

    Args:
        actor_name: Name of the authenticated service making the request
        actor_role: Role of that service
        target_name: Name of the service to be modified

    Returns:
        True when the actor targets itself or holds the FULL role

    Raises:
        InvalidTarget: If target_name is blank
        AccessDenied: If a READ actor targets another service
    """
    if _is_blank(target_name):
        raise InvalidTarget()

    if _same_name(actor_name, target_name):
        return True

    if _role(actor_role) is not Role.FULL:
        logger.warning(f"Service '{actor_name}' denied modification of '{target_name}'")
        raise AccessDenied()

    return True


def can_modify_password(
    target_name: Optional[str],
    actor_role: Role | str,
    supplied_old_password: Optional[str],
    stored_password_hash: Optional[str],
    verify_fn: VerifyFn,
) -> bool:
    """
    Checks whether the target's password may be replaced.

    FULL actors may always set a password. Anyone else must supply the
    current password, which has to verify against the stored hash.

    Raises:
        InvalidTarget: If target_name is blank
    """
    if _is_blank(target_name):
        raise InvalidTarget()

    if _role(actor_role) is Role.FULL:
        return True

    if _is_blank(stored_password_hash) or supplied_old_password is None:
        return False

    try:
        return bool(verify_fn(supplied_old_password, stored_password_hash))
    except ValueError:
        return False


def is_password_change_requested(new_hash: Optional[str], old_hash: Optional[str]) -> bool:
    """True when a non-blank new hash differs (ignoring case) from the old one."""
    if _is_blank(new_hash):
        return False
    if old_hash is None:
        return True
    return new_hash.lower() != old_hash.lower()


def can_change_role(actor_role: Role | str, current_role: Role | str, requested_role: Role | str | None) -> bool:
    """
    Checks whether the actor may set the requested role.

    Raises:
        AccessDenied: If a non-FULL actor asks for a different role
    """
    if requested_role is None or _role(requested_role) is _role(current_role):
        return True

    if _role(actor_role) is not Role.FULL:
        raise AccessDenied("Only services with the FULL role may change roles")

    return True
