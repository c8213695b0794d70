"""Plantwatch — Machine Schemas.

Pydantic models for Machine API requests and responses.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, computed_field, field_validator

from schemas import CamelModel, ValidatedModel, sanitize_string, validate_no_script


class MachineStatus(str, Enum):
    ACTIVE = "Active"
    IDLE = "Idle"
    ERROR = "Error"


class MachineMode(str, Enum):
    AUTO = "Auto"
    MANUAL = "Manual"


class HealthState(str, Enum):
    """Derived health classification, never stored."""
    HEALTHY = "Healthy"
    WARNING = "Warning"
    CRITICAL = "Critical"


def _clean_text(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return None
    return validate_no_script(sanitize_string(value), field_name)


class MachineCreate(ValidatedModel):
    """Payload for registering a new machine."""
    name: str = Field(..., min_length=1, max_length=255)
    type: str = Field(..., min_length=1, max_length=100)
    max_temperature: float = Field(80.0, allow_inf_nan=False)
    min_efficiency: float = Field(60.0, ge=0, le=100, allow_inf_nan=False)

    @field_validator("name", "type")
    @classmethod
    def clean(cls, v: str, info) -> str:
        return _clean_text(v, info.field_name)


class MachineUpdate(ValidatedModel):
    """Payload for renaming or retyping a machine."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, min_length=1, max_length=100)

    @field_validator("name", "type")
    @classmethod
    def clean(cls, v: Optional[str], info) -> Optional[str]:
        return _clean_text(v, info.field_name)


class AssignJobRequest(ValidatedModel):
    job: str = Field(..., min_length=1, max_length=255)

    @field_validator("job")
    @classmethod
    def clean(cls, v: str) -> str:
        return _clean_text(v, "job")


class SetModeRequest(ValidatedModel):
    # Validated in the service so an unknown mode surfaces as a domain error
    mode: str = Field(..., min_length=1, max_length=32)


class ReasonRequest(ValidatedModel):
    """Body shared by maintenance start and emergency shutdown."""
    reason: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def clean(cls, v: str) -> str:
        return _clean_text(v, "reason")


class ThresholdsUpdate(ValidatedModel):
    max_temperature: float = Field(..., allow_inf_nan=False)
    min_efficiency: float = Field(..., ge=0, le=100, allow_inf_nan=False)


class AssignEngineerRequest(ValidatedModel):
    """``engineerId: null`` clears the assignment."""
    engineer_id: Optional[int] = Field(..., ge=1)


class Machine(CamelModel):
    """Full Machine resource response."""

    id: int
    name: str
    type: str
    status: MachineStatus
    mode: MachineMode
    current_job: Optional[str] = None
    temperature: float
    efficiency: float
    cycle_time: int
    max_temperature: float
    min_efficiency: float
    under_maintenance: bool
    maintenance_reason: Optional[str] = None
    maintenance_start: Optional[datetime] = None
    maintenance_end: Optional[datetime] = None
    last_maintenance_date: Optional[datetime] = None
    assigned_engineer_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def health(self) -> HealthState:
        from services.alert_engine import classify_health

        return classify_health(
            self.status, self.temperature, self.efficiency,
            self.max_temperature, self.min_efficiency,
        )


class ShutdownResult(CamelModel):
    message: str
    count: int


class SeedResult(CamelModel):
    message: str
    created: list[Machine]
