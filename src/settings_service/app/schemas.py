# app/schemas.py
from datetime import datetime, timezone
from enum import Enum
from math import ceil
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Role

T = TypeVar("T")


# --- Service Schemas ---
class ServiceBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Unique service name (case-insensitive)")


class ServiceCreate(ServiceBase):
    password: str = Field(..., min_length=1, description="Plain password, hashed before it is stored")
    role: Role = Field(Role.READ, description="READ for self-service, FULL to act on other services")


class ServiceUpdateRequest(BaseModel):
    """Changes requested for a service; unset fields are left untouched."""

    target_name: str = Field("", description="Name of the service being modified")
    new_name: str | None = Field(None, max_length=255)
    new_password: str | None = None
    old_password: str | None = Field(None, description="Current password, required for self-service password changes")
    role: Role | None = None


class ServiceUpdate(BaseModel):
    """HTTP body for PUT /services/{name}."""

    name: str | None = Field(None, min_length=1, max_length=255)
    password: str | None = None
    old_password: str | None = None
    role: Role | None = None


# --- Read Schema (used when returning data from DB) ---
class Service(ServiceBase):
    id: int
    role: Role
    created_at: int
    # password_hash is excluded so it can never reach a response body

    model_config = ConfigDict(from_attributes=True)


class ServiceRecord(Service):
    """Full record including the password hash. Internal to the core."""

    password_hash: str

    def public(self) -> Service:
        return Service(id=self.id, name=self.name, role=self.role, created_at=self.created_at)


# --- Setting Schemas ---
class SettingWrite(BaseModel):
    value: str = Field(..., description="Opaque setting payload")


class Setting(BaseModel):
    id: int
    owner_id: int
    name: str
    value: str
    last_used_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("last_used_at")
    @classmethod
    def as_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite hands back naive datetimes; stored values are always UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# --- Paging ---
class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class PageRequest(BaseModel):
    page: int = Field(0, ge=0, description="Zero-based page index")
    size: int = Field(20, ge=1, description="Maximum number of items per page")
    sort: str = Field("id", description="Column to order by")
    direction: SortDirection = SortDirection.asc

    @property
    def offset(self) -> int:
        return self.page * self.size


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.size) if self.size else 0

    @property
    def is_empty(self) -> bool:
        return not self.items
