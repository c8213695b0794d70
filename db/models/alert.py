"""Plantwatch — Alert ORM Model."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text

from db.base import Base, utcnow
from schemas.alert import AlertSeverity, AlertType


class Alert(Base):
    """A machine alert. Once ``resolved`` is set the row is never mutated again."""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    machine_id = Column(
        Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = Column(
        Enum(AlertType, name="alert_type", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=32),
        nullable=False,
    )
    severity = Column(
        Enum(AlertSeverity, name="alert_severity", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=16),
        nullable=False,
        default=AlertSeverity.LOW,
    )
    message = Column(Text, nullable=False)

    resolved = Column(Boolean, nullable=False, default=False, index=True)
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    acknowledged_note = Column(Text, nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Alert id={self.id} machine={self.machine_id} {self.type}/{self.severity}>"
