"""Audit log sink: append-only writes, filtered listing and CSV export."""

import csv
import io
from datetime import datetime

import pytest
from sqlalchemy import text

from conftest import auth_headers
from database import get_db_context
from db.models import Alert, Log, Machine
from schemas.audit import LogAction
from schemas.machine import MachineStatus
from services.audit_service import CSV_HEADER, AuditLogSink


class _BrokenSession:
    """Session stand-in whose commit always fails."""

    identity_map = {}

    def __init__(self):
        self.rolled_back = False

    def add(self, obj):
        pass

    def add_all(self, objs):
        pass

    async def commit(self):
        raise RuntimeError("disk on fire")

    async def rollback(self):
        self.rolled_back = True


async def _log_at(when: datetime, machine_id=None, user_id=None, action=LogAction.START, details=None):
    async with get_db_context() as db:
        entry = Log(
            timestamp=when, machine_id=machine_id, user_id=user_id, action=action, details=details
        )
        db.add(entry)
        await db.commit()
        await db.refresh(entry)
        return entry


class TestSink:

    @pytest.mark.asyncio
    async def test_failed_write_never_raises(self):
        session = _BrokenSession()
        sink = AuditLogSink(session)

        assert await sink.record(1, 2, LogAction.START) is None
        assert await sink.record_many(1, [2, 3], LogAction.EMERGENCY_SHUTDOWN) == 0
        assert session.rolled_back

    @pytest.mark.asyncio
    async def test_record_many_writes_one_row_per_machine(self, admin, make_machine):
        first = await make_machine("First")
        second = await make_machine("Second")

        async with get_db_context() as db:
            sink = AuditLogSink(db)
            written = await sink.record_many(admin.id, [first.id, second.id], LogAction.EMERGENCY_SHUTDOWN)
            page = await sink.list_entries()

        assert written == 2
        assert page.total == 2
        assert {e.machine_id for e in page.data} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_entries_joined_and_newest_first(self, admin, make_machine):
        machine = await make_machine("Press P2")
        old = await _log_at(datetime(2024, 1, 1, 8, 0), machine.id, admin.id)
        new = await _log_at(datetime(2024, 1, 2, 8, 0), machine.id, None, LogAction.AUTO_ALERT)

        async with get_db_context() as db:
            page = await AuditLogSink(db).list_entries()

        assert [e.id for e in page.data] == [new.id, old.id]
        assert page.data[1].user_name == admin.name
        assert page.data[1].machine_name == "Press P2"
        assert page.data[0].user_name is None

    @pytest.mark.asyncio
    async def test_filters(self, make_machine):
        first = await make_machine("First")
        second = await make_machine("Second")
        await _log_at(datetime(2024, 1, 1), first.id)
        in_range = await _log_at(datetime(2024, 1, 5), first.id)
        await _log_at(datetime(2024, 1, 5), second.id)
        await _log_at(datetime(2024, 1, 9), first.id)

        async with get_db_context() as db:
            page = await AuditLogSink(db).list_entries(
                machine_id=first.id,
                start=datetime(2024, 1, 3),
                end=datetime(2024, 1, 7),
            )

        assert page.total == 1
        assert [e.id for e in page.data] == [in_range.id]


class TestLogApi:

    @pytest.mark.asyncio
    async def test_admin_only(self, client, engineer, viewer):
        for user in (engineer, viewer):
            resp = await client.get("/api/logs", headers=auth_headers(user))
            assert resp.status_code == 403
            resp = await client.get("/api/logs/export", headers=auth_headers(user))
            assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_pagination(self, client, admin, make_machine):
        machine = await make_machine()
        for day in range(1, 6):
            await _log_at(datetime(2024, 3, day), machine.id, admin.id)

        resp = await client.get(
            "/api/logs", params={"page": 2, "limit": 2}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 5
        assert body["page"] == 2
        assert body["limit"] == 2
        assert [e["timestamp"][:10] for e in body["data"]] == ["2024-03-03", "2024-03-02"]

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, client, admin):
        resp = await client.get("/api/logs", params={"limit": 501}, headers=auth_headers(admin))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_date_filter_accepts_aware_timestamps(self, client, admin, make_machine):
        machine = await make_machine()
        await _log_at(datetime(2024, 1, 1, 12, 0), machine.id)
        kept = await _log_at(datetime(2024, 1, 1, 18, 0), machine.id)

        resp = await client.get(
            "/api/logs",
            params={"from": "2024-01-01T17:00:00+02:00"},
            headers=auth_headers(admin),
        )
        assert [e["id"] for e in resp.json()["data"]] == [kept.id]

    @pytest.mark.asyncio
    async def test_csv_export(self, client, admin, make_machine):
        machine = await make_machine("Mill M3")
        await _log_at(
            datetime(2024, 2, 1, 9, 30),
            machine.id,
            admin.id,
            LogAction.UPDATE_THRESHOLDS,
            "maxTemp=90, minEfficiency=60\nsecond line",
        )

        resp = await client.get("/api/logs/export", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "audit_logs.csv" in resp.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0] == CSV_HEADER
        assert rows[1] == [
            "2024-02-01T09:30:00Z",
            admin.name,
            "Admin",
            "Mill M3",
            "Lathe",
            "UpdateThresholds",
            "maxTemp=90 minEfficiency=60 second line",
        ]


class TestAuditFailureDoesNotFailAction:
    """A lost audit write leaves the committed action and its response intact."""

    @staticmethod
    async def _break_audit_table():
        async with get_db_context() as db:
            await db.execute(text("DROP TABLE logs"))
            await db.commit()

    @pytest.mark.asyncio
    async def test_start_still_succeeds(self, client, admin, make_machine):
        machine = await make_machine()
        await self._break_audit_table()

        resp = await client.post(f"/api/machines/{machine.id}/start", headers=auth_headers(admin))

        assert resp.status_code == 200
        assert resp.json()["status"] == "Active"
        async with get_db_context() as db:
            assert (await db.get(Machine, machine.id)).status == MachineStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_resolve_still_succeeds(self, client, admin, make_machine, make_alert):
        machine = await make_machine()
        alert = await make_alert(machine.id)
        await self._break_audit_table()

        resp = await client.post(f"/api/alerts/{alert.id}/resolve", headers=auth_headers(admin))

        assert resp.status_code == 200
        assert resp.json()["resolved"] is True
        async with get_db_context() as db:
            assert (await db.get(Alert, alert.id)).resolved is True

    @pytest.mark.asyncio
    async def test_emergency_shutdown_still_succeeds(self, client, admin, make_machine):
        await make_machine(status=MachineStatus.ACTIVE)
        await self._break_audit_table()

        resp = await client.post(
            "/api/machines/emergency/shutdown",
            json={"reason": "Fire alarm"},
            headers=auth_headers(admin),
        )

        assert resp.status_code == 200
        assert resp.json()["count"] == 1
