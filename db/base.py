"""Plantwatch — Database Declarative Base.

Shared SQLAlchemy declarative base for all ORM models.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import DeclarativeBase, declared_attr


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    id: Any
    __name__: str

    # Generate __tablename__ automatically
    @declared_attr
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"
