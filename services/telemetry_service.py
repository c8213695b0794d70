"""Plantwatch — Telemetry Simulator.

Two background loops started with the application:

- machine tick: random-walks every machine's temperature and efficiency,
  advances its cycle counter, evaluates thresholds and broadcasts
  ``machine_update`` with the whole fleet.
- metrics tick: broadcasts the fleet summary as ``metrics_update``.

Each machine is updated while holding its lock from ``machine_locks``, the
same lock the control service takes, so a tick never overwrites a control
command in flight (or vice versa). A failing tick is logged and the loop
carries on.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import SimulationSettings
from database import get_db_context
from db.models import Machine
from logger import get_logger
from schemas.machine import Machine as MachineSchema
from services.alarm_service import AlertService
from services.analytics_service import fleet_summary
from services.broadcast_service import ConnectionManager, manager
from services.machine_locks import MachineLockRegistry, machine_locks

logger = get_logger(__name__)

EFFICIENCY_FLOOR = 50.0
EFFICIENCY_CEILING = 100.0
# Per-tick random walk step is uniform in [-STEP, +STEP]
STEP = 1.0

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def step_machine(machine: Machine, rng: random.Random) -> None:
    """Advance one machine by one tick of simulated telemetry."""
    machine.temperature = machine.temperature + (rng.random() - 0.5) * 2 * STEP
    efficiency = machine.efficiency + (rng.random() - 0.5) * 2 * STEP
    machine.efficiency = max(EFFICIENCY_FLOOR, min(EFFICIENCY_CEILING, efficiency))
    machine.cycle_time = (machine.cycle_time or 0) + 1


def serialize_machines(machines: list[Machine]) -> list[dict[str, Any]]:
    return [
        MachineSchema.model_validate(m).model_dump(mode="json", by_alias=True)
        for m in machines
    ]


class TelemetrySimulator:
    """Owns the two simulator loops.

    Args:
        settings: Intervals and alerting switches.
        broadcaster: Destination for WebSocket events.
        locks: Per-machine lock registry shared with the control service.
        rng: Random source; pass a seeded ``random.Random`` for determinism.
        session_factory: Async context manager yielding a session.
    """

    def __init__(
        self,
        settings: SimulationSettings,
        broadcaster: ConnectionManager = manager,
        locks: MachineLockRegistry = machine_locks,
        rng: random.Random | None = None,
        session_factory: SessionFactory = get_db_context,
    ) -> None:
        self.settings = settings
        self.broadcaster = broadcaster
        self.locks = locks
        self.rng = rng or random.Random(settings.seed)
        self._session_factory = session_factory
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            logger.warning("Telemetry simulator already running")
            return
        self._tasks = [
            asyncio.create_task(
                self._loop("machine", self.settings.machine_interval_seconds, self.machine_tick),
                name="simulator-machine",
            ),
            asyncio.create_task(
                self._loop("metrics", self.settings.metrics_interval_seconds, self.metrics_tick),
                name="simulator-metrics",
            ),
        ]
        logger.info(
            "Telemetry simulator started",
            machine_interval=self.settings.machine_interval_seconds,
            metrics_interval=self.settings.metrics_interval_seconds,
            auto_alerts=self.settings.auto_alerts,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Telemetry simulator stopped")

    async def _loop(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[Any]],
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Simulator tick failed", loop=name)

    # =========================================================================
    # Ticks
    # =========================================================================

    async def machine_tick(self) -> list[dict[str, Any]]:
        """Update every machine once, raise alerts, broadcast the fleet."""
        async with self._session_factory() as db:
            alerts = AlertService(db)
            result = await db.execute(select(Machine.id).order_by(Machine.id))
            machine_ids = list(result.scalars().all())

            for machine_id in machine_ids:
                async with self.locks.hold(machine_id):
                    machine = await db.get(Machine, machine_id, populate_existing=True)
                    if machine is None:
                        continue
                    step_machine(machine, self.rng)
                    await db.commit()
                    if self.settings.auto_alerts:
                        await alerts.check_and_create_alerts(machine)

            result = await db.execute(
                select(Machine).order_by(Machine.id).execution_options(populate_existing=True)
            )
            payload = serialize_machines(list(result.scalars().all()))

        await self.broadcaster.broadcast("machine_update", payload)
        return payload

    async def metrics_tick(self) -> dict[str, Any]:
        async with self._session_factory() as db:
            summary = await fleet_summary(db)

        payload = summary.model_dump(mode="json", by_alias=True)
        await self.broadcaster.broadcast("metrics_update", payload)
        return payload
