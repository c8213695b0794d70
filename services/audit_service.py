"""Plantwatch — Audit Log Sink.

Write side: ``AuditLogSink.record`` appends one row per completed action.
It runs after the action's own commit and never raises; a failed write is
rolled back and logged, and the objects the caller already committed are
reloaded so its response is unaffected.

Read side: paginated listing joined with user and machine names, and CSV
export of the same filtered view.

The sink exposes no update or delete. On PostgreSQL the ``logs`` table is
additionally protected by a trigger (see migrations/versions/002).
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Log, Machine, User
from logger import get_logger
from schemas.audit import LogAction, LogEntry
from schemas.response import Page

logger = get_logger(__name__)

CSV_HEADER = ["timestamp", "user", "role", "machine", "type", "action", "details"]


def _flatten(value: str | None) -> str:
    """Collapse newlines and commas so a details field stays one CSV cell."""
    if not value:
        return ""
    return re.sub(r"\s*[\r\n,]+\s*", " ", value)


class AuditLogSink:
    """Append-only access to the audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="AuditLogSink")

    async def _discard_failed_write(self) -> None:
        """Roll back a failed audit write and reload what the rollback expired.

        Everything else in the session was committed before the audit write,
        so reloading restores the caller's objects to their committed state.
        """
        await self.db.rollback()
        for obj in list(self.db.identity_map.values()):
            try:
                await self.db.refresh(obj)
            except Exception as exc:
                self.logger.warning(
                    "Reload after audit failure failed",
                    entity=type(obj).__name__,
                    error_type=type(exc).__name__,
                )

    async def record(
        self,
        user_id: int | None,
        machine_id: int | None,
        action: LogAction,
        details: str | None = None,
    ) -> Log | None:
        """Append an entry. Returns the row, or None if the write failed."""
        entry = Log(user_id=user_id, machine_id=machine_id, action=action, details=details)
        try:
            self.db.add(entry)
            await self.db.commit()
        except Exception as exc:
            await self._discard_failed_write()
            self.logger.error(
                "Audit write failed",
                action=LogAction(action).value,
                machine_id=machine_id,
                user_id=user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        return entry

    async def record_many(
        self,
        user_id: int | None,
        machine_ids: list[int],
        action: LogAction,
        details: str | None = None,
    ) -> int:
        """Append one entry per machine in a single commit. Returns rows written."""
        if not machine_ids:
            return 0
        try:
            self.db.add_all([
                Log(user_id=user_id, machine_id=mid, action=action, details=details)
                for mid in machine_ids
            ])
            await self.db.commit()
        except Exception as exc:
            await self._discard_failed_write()
            self.logger.error(
                "Audit batch write failed",
                action=LogAction(action).value,
                count=len(machine_ids),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return 0
        return len(machine_ids)

    # =========================================================================
    # Read side
    # =========================================================================

    @staticmethod
    def _filtered(
        stmt: Select[Any],
        machine_id: int | None,
        start: datetime | None,
        end: datetime | None,
    ) -> Select[Any]:
        if machine_id is not None:
            stmt = stmt.where(Log.machine_id == machine_id)
        if start is not None:
            stmt = stmt.where(Log.timestamp >= start)
        if end is not None:
            stmt = stmt.where(Log.timestamp <= end)
        return stmt

    def _joined(self) -> Select[Any]:
        return (
            select(Log, User.name, User.role, Machine.name, Machine.type)
            .outerjoin(User, User.id == Log.user_id)
            .outerjoin(Machine, Machine.id == Log.machine_id)
            .order_by(Log.timestamp.desc(), Log.id.desc())
        )

    async def list_entries(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        machine_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Page[LogEntry]:
        """Newest-first page of entries matching the filters."""
        count_stmt = self._filtered(select(func.count(Log.id)), machine_id, start, end)
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = self._filtered(self._joined(), machine_id, start, end)
        stmt = stmt.offset((page - 1) * limit).limit(limit)
        rows = (await self.db.execute(stmt)).all()

        data = [
            LogEntry(
                id=log.id,
                timestamp=log.timestamp,
                action=log.action,
                details=log.details,
                user_id=log.user_id,
                user_name=user_name,
                user_role=user_role,
                machine_id=log.machine_id,
                machine_name=machine_name,
            )
            for log, user_name, user_role, machine_name, _machine_type in rows
        ]
        return Page[LogEntry](total=total, page=page, limit=limit, data=data)

    async def export_csv(
        self,
        *,
        machine_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> str:
        """Render every matching entry as CSV, newest first."""
        stmt = self._filtered(self._joined(), machine_id, start, end)
        rows = (await self.db.execute(stmt)).all()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for log, user_name, user_role, machine_name, machine_type in rows:
            writer.writerow([
                log.timestamp.isoformat() + "Z",
                user_name or "",
                user_role.value if user_role else "",
                machine_name if machine_name is not None else (log.machine_id or ""),
                machine_type or "",
                log.action.value,
                _flatten(log.details),
            ])

        self.logger.info("Audit log exported", rows=len(rows), machine_id=machine_id)
        return buffer.getvalue()
