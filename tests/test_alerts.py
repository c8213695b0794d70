"""Alert lifecycle: creation, acknowledgement, resolution and auto-alerting."""

import pytest
from sqlalchemy import select

from conftest import auth_headers
from database import get_db_context
from db.models import Alert, Log
from schemas.alert import AlertSeverity, AlertType
from schemas.audit import LogAction
from services.alarm_service import AlertService


async def _alert(alert_id: int) -> Alert:
    async with get_db_context() as db:
        return await db.get(Alert, alert_id)


class TestManualAlerts:

    @pytest.mark.asyncio
    async def test_admin_creates_alert(self, client, admin, make_machine):
        machine = await make_machine()

        resp = await client.post(
            "/api/alerts",
            json={"machineId": machine.id, "type": "Predictive", "severity": "Medium",
                  "message": "Vibration trending up"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["type"] == "Predictive"
        assert body["severity"] == "Medium"
        assert body["resolved"] is False
        assert body["acknowledged"] is False

    @pytest.mark.asyncio
    async def test_unknown_machine_is_404(self, client, admin):
        resp = await client.post(
            "/api/alerts",
            json={"machineId": 77, "type": "Overheat", "message": "hot"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_type_is_400(self, client, admin, make_machine):
        machine = await make_machine()
        resp = await client.post(
            "/api/alerts",
            json={"machineId": machine.id, "type": "Meltdown", "message": "hot"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_engineer_cannot_create(self, client, engineer, make_machine):
        machine = await make_machine()
        resp = await client.post(
            "/api/alerts",
            json={"machineId": machine.id, "type": "Overheat", "message": "hot"},
            headers=auth_headers(engineer),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_list_newest_first_with_filter(self, client, viewer, make_machine, make_alert):
        first = await make_machine("First")
        second = await make_machine("Second")
        a1 = await make_alert(first.id)
        a2 = await make_alert(second.id)
        a3 = await make_alert(first.id, type=AlertType.ERROR)
        headers = auth_headers(viewer)

        resp = await client.get("/api/alerts", headers=headers)
        assert resp.status_code == 200
        assert [a["id"] for a in resp.json()] == [a3.id, a2.id, a1.id]

        resp = await client.get("/api/alerts", params={"machineId": first.id}, headers=headers)
        assert [a["id"] for a in resp.json()] == [a3.id, a1.id]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_acknowledge_is_repeatable(self, client, engineer, make_machine, make_alert):
        machine = await make_machine()
        alert = await make_alert(machine.id)
        headers = auth_headers(engineer)

        resp = await client.post(
            f"/api/alerts/{alert.id}/acknowledge", json={"note": "Checking"}, headers=headers
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["acknowledged"] is True
        assert body["acknowledgedBy"] == engineer.id
        assert body["acknowledgedNote"] == "Checking"

        resp = await client.post(f"/api/alerts/{alert.id}/acknowledge", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["acknowledgedNote"] is None

        async with get_db_context() as db:
            logs = (await db.execute(
                select(Log).where(Log.action == LogAction.ACKNOWLEDGE_ALERT)
            )).scalars().all()
        assert len(logs) == 2

    @pytest.mark.asyncio
    async def test_viewer_cannot_acknowledge(self, client, viewer, make_machine, make_alert):
        machine = await make_machine()
        alert = await make_alert(machine.id)
        resp = await client.post(f"/api/alerts/{alert.id}/acknowledge", headers=auth_headers(viewer))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_resolve_is_irreversible(self, client, admin, make_machine, make_alert):
        machine = await make_machine()
        alert = await make_alert(machine.id)
        headers = auth_headers(admin)

        resp = await client.post(f"/api/alerts/{alert.id}/resolve", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["resolved"] is True
        assert resp.json()["resolvedBy"] == admin.id

        resp = await client.post(f"/api/alerts/{alert.id}/resolve", headers=headers)
        assert resp.status_code == 409
        assert resp.json()["error"] == "AlertAlreadyResolved"

        resp = await client.post(f"/api/alerts/{alert.id}/acknowledge", headers=headers)
        assert resp.status_code == 409

        assert (await _alert(alert.id)).acknowledged is False

    @pytest.mark.asyncio
    async def test_engineer_cannot_resolve(self, client, engineer, make_machine, make_alert):
        machine = await make_machine(assigned_engineer_id=engineer.id)
        alert = await make_alert(machine.id)
        resp = await client.post(f"/api/alerts/{alert.id}/resolve", headers=auth_headers(engineer))
        assert resp.status_code == 403
        assert (await _alert(alert.id)).resolved is False

    @pytest.mark.asyncio
    async def test_unknown_alert_is_404(self, client, admin):
        resp = await client.post("/api/alerts/31337/resolve", headers=auth_headers(admin))
        assert resp.status_code == 404


class TestAutoAlerts:

    @pytest.mark.asyncio
    async def test_breach_creates_alert_once(self, make_machine):
        machine = await make_machine(temperature=95.0)

        async with get_db_context() as db:
            service = AlertService(db)
            created = await service.check_and_create_alerts(machine)
            assert [(a.type, a.severity) for a in created] == [
                (AlertType.OVERHEAT, AlertSeverity.HIGH)
            ]
            assert await service.check_and_create_alerts(machine) == []
            assert await service.has_unresolved_critical(machine.id)

            logs = (await db.execute(
                select(Log).where(Log.action == LogAction.AUTO_ALERT)
            )).scalars().all()
            assert len(logs) == 1
            assert logs[0].user_id is None
            assert logs[0].machine_id == machine.id

    @pytest.mark.asyncio
    async def test_resolved_alert_allows_new_one(self, make_machine, make_alert):
        machine = await make_machine(temperature=95.0)
        await make_alert(machine.id, resolved=True)

        async with get_db_context() as db:
            created = await AlertService(db).check_and_create_alerts(machine)
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_healthy_machine_creates_nothing(self, make_machine):
        machine = await make_machine()
        async with get_db_context() as db:
            assert await AlertService(db).check_and_create_alerts(machine) == []

    @pytest.mark.asyncio
    async def test_low_efficiency_escalates_to_high(self, make_machine):
        machine = await make_machine(efficiency=65.0)
        machine.min_efficiency = 70.0

        async with get_db_context() as db:
            service = AlertService(db)
            [first] = await service.check_and_create_alerts(machine)
            assert (first.type, first.severity) == (AlertType.LOW_EFFICIENCY, AlertSeverity.MEDIUM)
            assert not await service.has_unresolved_critical(machine.id)

            machine.efficiency = 52.0
            [second] = await service.check_and_create_alerts(machine)
            assert second.id == first.id
            assert second.severity == AlertSeverity.HIGH
            assert await service.has_unresolved_critical(machine.id)

            open_alerts = (await db.execute(
                select(Alert).where(Alert.machine_id == machine.id)
            )).scalars().all()
            assert len(open_alerts) == 1

            logs = (await db.execute(
                select(Log).where(Log.action == LogAction.AUTO_ALERT).order_by(Log.id)
            )).scalars().all()
            assert [log.details for log in logs] == [
                "type=LowEfficiency, severity=Medium",
                "type=LowEfficiency, severity=High, escalated",
            ]

    @pytest.mark.asyncio
    async def test_recovery_does_not_downgrade(self, make_machine):
        machine = await make_machine(efficiency=52.0)
        machine.min_efficiency = 70.0

        async with get_db_context() as db:
            service = AlertService(db)
            [alert] = await service.check_and_create_alerts(machine)
            assert alert.severity == AlertSeverity.HIGH

            machine.efficiency = 65.0
            assert await service.check_and_create_alerts(machine) == []
            assert await service.has_unresolved_critical(machine.id)
