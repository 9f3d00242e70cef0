# src/zulip_companion/services/base.py

from __future__ import annotations

from dataclasses import dataclass

from ..core.context import ServiceContext
from ..core.models import Message


@dataclass(frozen=True, slots=True)
class ServiceCommand:
    """One row of a service's command table (shown by the help dashboard)."""

    usage: str
    description: str


class BaseService:
    """
    A pluggable message handler.

    Services are tried in a fixed order for every mention; the first `on_message`
    returning True claims the message. A service that wants reaction events
    defines `async def on_reaction(self, event: ReactionEvent) -> None`.
    """

    name: str = ""
    description: str = ""
    default_enabled: bool = True
    commands: tuple[ServiceCommand, ...] = ()

    def __init__(self, ctx: ServiceContext) -> None:
        self.ctx = ctx

    async def init(self) -> None:
        """One-time startup hook (resume persisted state, warm caches)."""
        return

    async def on_message(self, message: Message) -> bool:
        raise NotImplementedError
