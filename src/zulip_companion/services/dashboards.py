# src/zulip_companion/services/dashboards.py

from __future__ import annotations

import contextlib
import re

from ..core.context import ServiceContext
from ..core.models import Message, ReactionEvent
from ..core.text import command_text
from ..dashboards.scheduler import DashboardError, DashboardScheduler
from .base import BaseService, ServiceCommand

CMD_RE = re.compile(r"^dashboard\s+(start|stop|list|refresh)(?:\s+(.+))?$", re.IGNORECASE | re.DOTALL)


class DashboardsService(BaseService):
    name = "dashboards"
    description = "Pluggable self-updating dashboard messages"
    commands = (
        ServiceCommand("dashboard start <name> [params]", "Start a dashboard in this topic"),
        ServiceCommand("dashboard stop [name]", "Stop a dashboard (or all in topic)"),
        ServiceCommand("dashboard list", "List active dashboards in this topic"),
        ServiceCommand("dashboard refresh [name]", "Refresh a dashboard (or all in topic) immediately"),
    )

    def __init__(self, ctx: ServiceContext, scheduler: DashboardScheduler) -> None:
        super().__init__(ctx)
        self.scheduler = scheduler

    async def init(self) -> None:
        await self.scheduler.resume_all()

    async def _reply(self, msg: Message, content: str) -> None:
        await self.ctx.client.send_message(msg.channel, msg.topic, content)

    async def on_message(self, message: Message) -> bool:
        m = CMD_RE.match(command_text(message.content))
        if not m:
            return False

        sub = m.group(1).lower()
        arg = (m.group(2) or "").strip()
        first_word = arg.split()[0] if arg else None

        try:
            if sub == "start":
                await self._start(message, arg)
            elif sub == "stop":
                await self._stop(message, first_word)
            elif sub == "list":
                await self._list(message)
            else:
                await self._refresh(message, first_word)
        except DashboardError as e:
            await self._reply(message, str(e))
        return True

    async def _start(self, msg: Message, arg: str) -> None:
        if not arg:
            await self._reply(msg, "Usage: `dashboard start <name> [params]`")
            return
        name, _, params = arg.partition(" ")
        await self.scheduler.start(name, params.strip(), msg.channel, msg.topic)

    @staticmethod
    def _nothing_found(name: str | None) -> str:
        what = f"`{name}` dashboard" if name else "dashboards"
        return f"No active {what} found in this topic."

    async def _stop(self, msg: Message, name: str | None) -> None:
        stopped = await self.scheduler.stop(msg.channel, msg.topic, name)
        if not stopped:
            await self._reply(msg, self._nothing_found(name))
            return
        names = ", ".join(f"`{row.name}`" for row in stopped)
        await self._reply(msg, f"Stopped dashboard(s): {names}")

    async def _list(self, msg: Message) -> None:
        rows = self.scheduler.list_at(msg.channel, msg.topic)
        if not rows:
            await self._reply(msg, "No active dashboards in this topic.")
            return
        lines = []
        for row in rows:
            definition = self.scheduler.registry.get(row.name)
            desc = definition.description if definition is not None else "unknown"
            lines.append(f"- **{row.name}** — {desc} (every {row.interval_seconds:g}s)")
        await self._reply(msg, "**Active dashboards:**\n" + "\n".join(lines))

    async def _refresh(self, msg: Message, name: str | None) -> None:
        refreshed = await self.scheduler.refresh(msg.channel, msg.topic, name)
        if not refreshed:
            await self._reply(msg, self._nothing_found(name))

    async def on_reaction(self, event: ReactionEvent) -> None:
        if not event.added or self.ctx.is_bot(user_id=event.user_id):
            return
        emoji = self.ctx.settings.refresh_emoji
        if event.emoji_name != emoji:
            return

        row = await self.scheduler.refresh_by_message(event.message_id)
        if row is None:
            return
        # Removing the reaction signals "done".
        with contextlib.suppress(Exception):
            await self.ctx.client.remove_reaction(event.message_id, emoji)
