# src/zulip_companion/dashboards/scheduler.py

"""
Dashboard scheduler.

Each running dashboard owns one pinned message and one timer task that
re-renders the message every `interval_seconds`:
- a failed render or edit is logged and retried on the next tick,
- a refused edit (the pinned message was deleted) tears the dashboard down,
- rows survive restarts; `resume_all` re-arms them on startup.

To stop every timer (rows stay), call `shutdown()`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from enum import StrEnum

from ..core.context import ServiceContext
from .dashboard_store import DashboardInstance, DashboardStore, DuplicateDashboardError
from .registry import DEFAULT_INTERVAL_SECONDS, DashboardRegistry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DashboardError(RuntimeError):
    """A dashboard request that cannot be served. The message is the user-facing reply."""


class TickOutcome(StrEnum):
    UPDATED = "updated"
    REMOVED = "removed"
    FAILED = "failed"


class DashboardScheduler:
    def __init__(
            self,
            ctx: ServiceContext,
            store: DashboardStore,
            registry: DashboardRegistry,
            *,
            default_interval_seconds: float | None = None,
            sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.ctx = ctx
        self.store = store
        self.registry = registry
        self.default_interval_seconds = (
            default_interval_seconds
            if default_interval_seconds is not None
            else ctx.settings.dashboard_default_interval_seconds or DEFAULT_INTERVAL_SECONDS
        )
        self._sleep = sleep

        self._instances: dict[int, DashboardInstance] = {}
        self._timers: dict[int, asyncio.Task[None]] = {}

    # ---- introspection ----

    def has_timer(self, instance_id: int) -> bool:
        return instance_id in self._timers

    def list_at(self, channel: str, topic: str) -> list[DashboardInstance]:
        return self.store.list_at(channel, topic)

    def _matching(self, channel: str, topic: str, name: str | None) -> list[DashboardInstance]:
        if name:
            row = self.store.get_by_location(name.lower(), channel, topic)
            return [row] if row is not None else []
        return self.store.list_at(channel, topic)

    # ---- lifecycle ----

    async def start(self, name: str, params: str, channel: str, topic: str) -> DashboardInstance:
        name = name.lower()
        definition = self.registry.get(name)
        if definition is None:
            available = ", ".join(self.registry.names()) or "(none)"
            raise DashboardError(f"Unknown dashboard `{name}`. Available: {available}")

        err = definition.validate_params(params)
        if err:
            raise DashboardError(err)

        already_running = f"Dashboard `{name}` is already running here."
        if self.store.get_by_location(name, channel, topic) is not None:
            raise DashboardError(already_running)

        client = self.ctx.client
        interval = definition.interval_seconds or self.default_interval_seconds
        msg_id = await client.send_message(channel, topic, f"Starting dashboard `{name}`…")

        try:
            instance = self.store.create(
                name=name,
                channel=channel,
                topic=topic,
                msg_id=msg_id,
                interval_seconds=interval,
                params=params,
            )
        except DuplicateDashboardError as e:
            with contextlib.suppress(Exception):
                await client.delete_message(msg_id)
            raise DashboardError(already_running) from e

        try:
            content = await definition.render(instance, self.ctx, self.store)
            await client.edit_message(msg_id, content)
        except Exception as e:
            logger.exception("Dashboard first render failed name=%s id=%s", name, instance.id)
            with contextlib.suppress(Exception):
                await client.delete_message(msg_id)
            self.store.delete(instance.id)
            raise DashboardError(f"Failed to start dashboard `{name}`.") from e

        self.store.set_bootstrapped(instance.id)
        instance = replace(instance, bootstrapped=True)
        self._arm(instance, immediate=False)

        logger.info("Dashboard started name=%s id=%s in %s > %s", name, instance.id, channel, topic)
        return instance

    async def tick(self, instance: DashboardInstance) -> TickOutcome:
        instance = self._instances.get(instance.id, instance)
        definition = self.registry.get(instance.name)
        if definition is None:
            logger.warning("Unknown dashboard %r (id=%s), cleaning up", instance.name, instance.id)
            self.teardown(instance)
            return TickOutcome.REMOVED

        try:
            content = await definition.render(instance, self.ctx, self.store)
            edited = await self.ctx.client.edit_message(instance.msg_id, content)
        except Exception:
            # Leave the timer running; the next tick retries.
            logger.exception("Dashboard tick failed name=%s id=%s", instance.name, instance.id)
            return TickOutcome.FAILED

        if not edited:
            logger.info(
                "Dashboard message %s gone for %r (id=%s), cleaning up",
                instance.msg_id,
                instance.name,
                instance.id,
            )
            self.teardown(instance)
            return TickOutcome.REMOVED

        if not instance.bootstrapped:
            self.store.set_bootstrapped(instance.id)
            if instance.id in self._instances:
                self._instances[instance.id] = replace(instance, bootstrapped=True)

        return TickOutcome.UPDATED

    async def stop(self, channel: str, topic: str, name: str | None = None) -> list[DashboardInstance]:
        rows = self._matching(channel, topic, name)
        for row in rows:
            with contextlib.suppress(Exception):
                await self.ctx.client.delete_message(row.msg_id)
            self.teardown(row)
        if rows:
            logger.info("Dashboards stopped count=%s in %s > %s", len(rows), channel, topic)
        return rows

    async def refresh(self, channel: str, topic: str, name: str | None = None) -> list[DashboardInstance]:
        rows = self._matching(channel, topic, name)
        for row in rows:
            await self.tick(row)
        if rows:
            logger.info("Dashboards refreshed count=%s in %s > %s", len(rows), channel, topic)
        return rows

    async def refresh_by_message(self, msg_id: int) -> DashboardInstance | None:
        row = self.store.get_by_message(msg_id)
        if row is None:
            return None
        await self.tick(row)
        logger.info("Dashboard reaction-refresh name=%s id=%s", row.name, row.id)
        return row

    async def resume_all(self) -> int:
        resumed = 0
        for row in self.store.list_all():
            if row.name not in self.registry:
                logger.warning("Orphaned dashboard %r (id=%s), removing", row.name, row.id)
                self.store.delete(row.id)
                continue
            self._arm(row, immediate=True)
            resumed += 1
        if resumed:
            logger.info("Resumed %s dashboard(s)", resumed)
        return resumed

    def teardown(self, instance: DashboardInstance) -> None:
        task = self._timers.pop(instance.id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._instances.pop(instance.id, None)
        self.store.delete(instance.id)

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        self._instances.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---- timers ----

    def _arm(self, instance: DashboardInstance, *, immediate: bool) -> None:
        if instance.id in self._timers:
            return
        self._instances[instance.id] = instance
        self._timers[instance.id] = asyncio.create_task(
            self._run_timer(instance.id, immediate),
            name=f"dashboard-{instance.name}-{instance.id}",
        )

    async def _run_timer(self, instance_id: int, immediate: bool) -> None:
        if immediate and instance_id in self._instances:
            await self.tick(self._instances[instance_id])

        while instance_id in self._instances:
            await self._sleep(self._instances[instance_id].interval_seconds)
            current = self._instances.get(instance_id)
            if current is None:
                break
            await self.tick(current)
