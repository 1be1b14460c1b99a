# app/models.py
import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class Role(str, enum.Enum):
    """Capability tier of a service. FULL may act on any other service."""

    READ = "READ"
    FULL = "FULL"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def includes(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {Role.READ: 0, Role.FULL: 1}


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    # Lower-cased name, unique so that names differing only by case collide
    normalized_name = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False) # Never exposed outward
    role = Column(Enum(Role, name="service_role"), nullable=False, default=Role.READ)
    created_at = Column(Integer, nullable=False) # epoch seconds

    settings = relationship("Setting", back_populates="owner", passive_deletes=True)

    def __repr__(self):
        return f"<Service(name='{self.name}', role='{self.role}')>"


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_setting_owner_name"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    owner = relationship("Service", back_populates="settings")

    def __repr__(self):
        return f"<Setting(owner_id={self.owner_id}, name='{self.name}')>"
