"""Plantwatch — Alert Schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from schemas import CamelModel, ValidatedModel, sanitize_string, validate_no_script


class AlertType(str, Enum):
    OVERHEAT = "Overheat"
    LOW_EFFICIENCY = "LowEfficiency"
    ERROR = "Error"
    PREDICTIVE = "Predictive"


class AlertSeverity(str, Enum):
    """Alert severity. High is the critical tier that blocks Start and Reset."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AlertCreate(ValidatedModel):
    """Payload for manually raising an alert (Admin only)."""
    machine_id: int = Field(..., ge=1)
    type: AlertType
    severity: AlertSeverity = AlertSeverity.LOW
    message: str = Field(..., min_length=1, max_length=2000)

    @field_validator("message")
    @classmethod
    def clean_message(cls, v: str) -> str:
        return validate_no_script(sanitize_string(v), "message")


class AcknowledgeRequest(ValidatedModel):
    note: Optional[str] = Field(None, max_length=2000)

    @field_validator("note")
    @classmethod
    def clean_note(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return validate_no_script(sanitize_string(v), "note") or None


class Alert(CamelModel):
    """Alert resource response."""
    id: int
    machine_id: int
    type: AlertType
    severity: AlertSeverity
    message: str
    resolved: bool
    acknowledged: bool
    acknowledged_by: Optional[int] = None
    acknowledged_note: Optional[str] = None
    resolved_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
