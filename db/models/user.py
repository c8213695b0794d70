"""Plantwatch — User ORM Model."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from db.base import Base, utcnow
from schemas.security import UserRole


class User(Base):
    """An account that can authenticate against the API."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=16),
        nullable=False,
        default=UserRole.VIEWER,
    )
    approved = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"
