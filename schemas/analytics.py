"""Plantwatch — Analytics Schemas."""

from __future__ import annotations

from schemas import CamelModel


class FleetSummary(CamelModel):
    """Fleet-wide KPIs, also pushed as the ``metrics_update`` event.

    ``overheat_count`` and ``critical_count`` count unresolved alerts only.
    """
    active: int
    avg_efficiency: float
    overheat_count: int
    critical_count: int
    total_machines: int
