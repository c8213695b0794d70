"""Plantwatch — Audit Log ORM Model.

Append-only. ``machine_id`` has no foreign key: entries outlive the
machines they describe.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum, Integer, Text

from db.base import Base, utcnow
from schemas.audit import LogAction


class Log(Base):
    """One audit entry: who did what to which machine, and when."""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    machine_id = Column(Integer, nullable=True, index=True)
    action = Column(
        Enum(LogAction, name="log_action", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=32),
        nullable=False,
    )
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    details = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Log id={self.id} action={self.action} machine={self.machine_id}>"
