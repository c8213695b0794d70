"""
Plantwatch — Alert Engine.

Pure threshold logic shared by the API and the telemetry simulator:

- ``classify_health``: derived Healthy / Warning / Critical view of a machine.
- ``threshold_breaches``: the alerts a machine's current readings warrant.

Persisting alerts lives in ``services.alarm_service``.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

from schemas.alert import AlertSeverity, AlertType
from schemas.machine import HealthState, MachineStatus

# Efficiency below this fraction of min_efficiency is critical
CRITICAL_EFFICIENCY_FACTOR = 0.8
# Temperature above this fraction of max_temperature is a warning
WARNING_TEMPERATURE_FACTOR = 0.9


class MachineReading(Protocol):
    @property
    def status(self) -> MachineStatus: ...
    @property
    def temperature(self) -> float: ...
    @property
    def efficiency(self) -> float: ...
    @property
    def max_temperature(self) -> float: ...
    @property
    def min_efficiency(self) -> float: ...


class ThresholdBreach(BaseModel):
    """One alert-worthy condition found in a machine reading."""
    type: AlertType
    severity: AlertSeverity
    message: str


def classify_health(
    status: MachineStatus,
    temperature: float,
    efficiency: float,
    max_temperature: float,
    min_efficiency: float,
) -> HealthState:
    """Classify a reading. Critical wins over Warning, Warning over Healthy."""
    if (
        status == MachineStatus.ERROR
        or temperature > max_temperature
        or efficiency < CRITICAL_EFFICIENCY_FACTOR * min_efficiency
    ):
        return HealthState.CRITICAL
    if temperature > WARNING_TEMPERATURE_FACTOR * max_temperature or efficiency < min_efficiency:
        return HealthState.WARNING
    return HealthState.HEALTHY


def threshold_breaches(machine: MachineReading) -> list[ThresholdBreach]:
    """Return at most one breach per alert type for the machine's current reading."""
    breaches: list[ThresholdBreach] = []

    if machine.status == MachineStatus.ERROR:
        breaches.append(ThresholdBreach(
            type=AlertType.ERROR,
            severity=AlertSeverity.HIGH,
            message="Machine reported an error state",
        ))

    if machine.temperature > machine.max_temperature:
        breaches.append(ThresholdBreach(
            type=AlertType.OVERHEAT,
            severity=AlertSeverity.HIGH,
            message=(
                f"Temperature {machine.temperature:.1f} exceeds "
                f"max {machine.max_temperature:.1f}"
            ),
        ))

    critical_floor = CRITICAL_EFFICIENCY_FACTOR * machine.min_efficiency
    if machine.efficiency < critical_floor:
        breaches.append(ThresholdBreach(
            type=AlertType.LOW_EFFICIENCY,
            severity=AlertSeverity.HIGH,
            message=(
                f"Efficiency {machine.efficiency:.1f}% below critical floor "
                f"{critical_floor:.1f}%"
            ),
        ))
    elif machine.efficiency < machine.min_efficiency:
        breaches.append(ThresholdBreach(
            type=AlertType.LOW_EFFICIENCY,
            severity=AlertSeverity.MEDIUM,
            message=(
                f"Efficiency {machine.efficiency:.1f}% below minimum "
                f"{machine.min_efficiency:.1f}%"
            ),
        ))

    return breaches
