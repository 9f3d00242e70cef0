# src/zulip_companion/dashboards/registry.py

"""
Dashboard producers.

A producer renders the markdown of a pinned, periodically refreshed message.
The registry maps a producer name (as typed in `dashboard start <name>`) to
its definition; iteration order is registration order.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.context import ServiceContext
    from .dashboard_store import DashboardInstance, DashboardStore

DEFAULT_INTERVAL_SECONDS = 60.0


class DashboardDef:
    description: str = ""
    interval_seconds: float | None = None  # None: the configured default
    usage: str = ""

    def validate_params(self, params: str) -> str | None:
        """Return an error message for bad params, or None if they are fine."""
        return None

    async def render(
            self,
            instance: DashboardInstance,
            ctx: ServiceContext,
            store: DashboardStore,
    ) -> str:
        raise NotImplementedError


class ClockDashboard(DashboardDef):
    description = "Current date & time"
    interval_seconds = 5.0

    async def render(self, instance, ctx, store) -> str:
        return format_clock(datetime.now(UTC))


def format_clock(now: datetime) -> str:
    date = f"{now:%A, %B} {now.day}, {now.year}"
    return f"🕐 **{date}** — {now:%I:%M:%S %p} UTC"


def format_interval(seconds: float | None) -> str:
    if seconds is None:
        seconds = DEFAULT_INTERVAL_SECONDS
    if seconds >= 60:
        return f"{seconds / 60:g} min"
    return f"{seconds:g}s"


class DashboardRegistry:
    def __init__(self) -> None:
        self._defs: dict[str, DashboardDef] = {}

    def register(self, name: str, definition: DashboardDef) -> None:
        self._defs[name.lower()] = definition

    def get(self, name: str) -> DashboardDef | None:
        return self._defs.get(name.lower())

    def names(self) -> list[str]:
        return list(self._defs)

    def items(self) -> Iterator[tuple[str, DashboardDef]]:
        return iter(self._defs.items())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._defs

    def __len__(self) -> int:
        return len(self._defs)
