# src/zulip_companion/dashboards/help.py

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from .registry import DashboardDef, DashboardRegistry, format_interval

if TYPE_CHECKING:
    from ..services.base import BaseService


class HelpDashboard(DashboardDef):
    """
    Command reference built from the active services and the dashboard registry.

    `services` is the live list the loader fills in at startup, so the help
    reflects whatever ended up enabled.
    """

    description = "Bot features & command reference"
    interval_seconds = 60 * 60.0

    def __init__(self, registry: DashboardRegistry, services: Sequence[BaseService]) -> None:
        self._registry = registry
        self._services = services

    async def render(self, instance, ctx, store) -> str:
        return self.build()

    def build(self) -> str:
        lines: list[str] = ["## Bot Commands\n"]

        for svc in self._services:
            if not svc.commands:
                continue
            lines.append(f"### {svc.name[:1].upper()}{svc.name[1:]}")
            lines.append(f"*{svc.description}*\n")
            lines.append("| Command | Description |")
            lines.append("|---------|-------------|")
            for cmd in svc.commands:
                lines.append(f"| `{cmd.usage}` | {cmd.description} |")
            lines.append("")

        lines.append("### Available Dashboards\n")
        lines.append("| Name | Description | Interval |")
        lines.append("|------|-------------|----------|")
        for name, definition in self._registry.items():
            usage = definition.usage or name
            lines.append(
                f"| `{usage}` | {definition.description} | {format_interval(definition.interval_seconds)} |"
            )
        lines.append("")

        lines.append("### AI Assistant")
        lines.append(
            "Mention the bot with any question or request and it will answer using the "
            "conversation in the topic as context. It can also look things up in Zulip "
            "(search messages, list channels and users, and so on)."
        )
        return "\n".join(lines)
