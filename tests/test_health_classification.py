"""Health classification and threshold breach detection."""

from types import SimpleNamespace

import pytest

from schemas.alert import AlertSeverity, AlertType
from schemas.machine import HealthState, MachineStatus
from services.alert_engine import classify_health, threshold_breaches


def _reading(status=MachineStatus.ACTIVE, temperature=40.0, efficiency=90.0,
             max_temperature=80.0, min_efficiency=60.0):
    return SimpleNamespace(
        status=status,
        temperature=temperature,
        efficiency=efficiency,
        max_temperature=max_temperature,
        min_efficiency=min_efficiency,
    )


@pytest.mark.parametrize(
    "status, temperature, efficiency, expected",
    [
        (MachineStatus.ACTIVE, 40.0, 90.0, HealthState.HEALTHY),
        (MachineStatus.IDLE, 70.0, 60.0, HealthState.HEALTHY),
        (MachineStatus.ACTIVE, 72.1, 90.0, HealthState.WARNING),
        (MachineStatus.ACTIVE, 80.0, 90.0, HealthState.WARNING),
        (MachineStatus.ACTIVE, 40.0, 59.9, HealthState.WARNING),
        (MachineStatus.ACTIVE, 40.0, 48.5, HealthState.WARNING),
        (MachineStatus.ACTIVE, 80.1, 90.0, HealthState.CRITICAL),
        (MachineStatus.ACTIVE, 40.0, 47.9, HealthState.CRITICAL),
        (MachineStatus.ERROR, 40.0, 90.0, HealthState.CRITICAL),
    ],
)
def test_classify_health(status, temperature, efficiency, expected):
    assert classify_health(status, temperature, efficiency, 80.0, 60.0) == expected


def test_no_breach_for_healthy_reading():
    assert threshold_breaches(_reading()) == []


def test_overheat_is_high():
    breaches = threshold_breaches(_reading(temperature=85.0))
    assert [(b.type, b.severity) for b in breaches] == [(AlertType.OVERHEAT, AlertSeverity.HIGH)]


def test_low_efficiency_severity_depends_on_depth():
    medium = threshold_breaches(_reading(efficiency=55.0))
    assert [(b.type, b.severity) for b in medium] == [
        (AlertType.LOW_EFFICIENCY, AlertSeverity.MEDIUM)
    ]

    high = threshold_breaches(_reading(efficiency=40.0))
    assert [(b.type, b.severity) for b in high] == [
        (AlertType.LOW_EFFICIENCY, AlertSeverity.HIGH)
    ]


def test_error_status_and_overheat_reported_together():
    breaches = threshold_breaches(_reading(status=MachineStatus.ERROR, temperature=99.0))
    assert {b.type for b in breaches} == {AlertType.ERROR, AlertType.OVERHEAT}
    assert all(b.severity == AlertSeverity.HIGH for b in breaches)


def test_custom_thresholds_respected():
    assert threshold_breaches(_reading(temperature=85.0, max_temperature=90.0)) == []
    assert classify_health(MachineStatus.ACTIVE, 85.0, 90.0, 90.0, 60.0) == HealthState.WARNING
