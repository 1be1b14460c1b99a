"""
Password hashing and the principal adapter.

``PasswordVerifier`` is the one-way hash + compare contract used by the
gateway and the access policy. The shipped implementation wraps a passlib
``CryptContext`` using Argon2.

``Principal`` is computed on demand from a service's role. The stored
service record itself carries no identity-framework behaviour.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from passlib.context import CryptContext

from .models import Role

logger = logging.getLogger(__name__)


class PasswordVerifier(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...


class Argon2PasswordVerifier:
    """Argon2id hashing through passlib."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 1):
        self._context = CryptContext(
            schemes=["argon2"],
            deprecated="auto",
            argon2__time_cost=time_cost,
            argon2__memory_cost=memory_cost,
            argon2__parallelism=parallelism,
        )

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self._context.verify(password, password_hash)
        except ValueError:
            # Stored value is not a hash this context recognises
            logger.warning("Stored password hash has an unrecognised format")
            return False


@dataclass(frozen=True)
class Principal:
    """Capabilities of an authenticated service, derived from its role."""

    id: int
    name: str
    role: Role

    @classmethod
    def from_service(cls, service) -> "Principal":
        return cls(id=service.id, name=service.name, role=Role(service.role))

    @property
    def authorities(self) -> tuple[str, ...]:
        return tuple(f"ROLE_{role.value}" for role in Role if self.role.includes(role))

    @property
    def has_full_role(self) -> bool:
        return self.role is Role.FULL

    # Services have no expiry state
    is_active = True
