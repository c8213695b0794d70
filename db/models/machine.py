"""Plantwatch — Machine ORM Model."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text

from db.base import Base, utcnow
from schemas.machine import MachineMode, MachineStatus


class Machine(Base):
    """A monitored machine, its live telemetry and its control state."""
    __tablename__ = "machines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(100), nullable=False)  # free-form, e.g. 'Conveyor', 'Press'

    status = Column(
        Enum(MachineStatus, name="machine_status", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=16),
        nullable=False,
        default=MachineStatus.IDLE,
    )
    mode = Column(
        Enum(MachineMode, name="machine_mode", native_enum=False,
             values_callable=lambda e: [m.value for m in e], length=16),
        nullable=False,
        default=MachineMode.AUTO,
    )
    current_job = Column(String(255), nullable=True)

    # Telemetry
    temperature = Column(Float, nullable=False, default=25.0)
    efficiency = Column(Float, nullable=False, default=90.0)
    cycle_time = Column(Integer, nullable=False, default=0)

    # Thresholds
    max_temperature = Column(Float, nullable=False, default=80.0)
    min_efficiency = Column(Float, nullable=False, default=60.0)

    # Maintenance window
    under_maintenance = Column(Boolean, nullable=False, default=False)
    maintenance_reason = Column(Text, nullable=True)
    maintenance_start = Column(DateTime, nullable=True)
    maintenance_end = Column(DateTime, nullable=True)
    last_maintenance_date = Column(DateTime, nullable=True)

    assigned_engineer_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Machine id={self.id} name={self.name!r} status={self.status}>"
