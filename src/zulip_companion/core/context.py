# src/zulip_companion/core/context.py

from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from .ports import MessagingGateway


@dataclass(frozen=True, slots=True)
class ServiceContext:
    """Process-wide handle shared by every component. Built once at startup."""

    client: MessagingGateway
    settings: Settings
    bot_email: str
    bot_user_id: int
    bot_name: str = ""

    def is_bot(self, *, email: str | None = None, user_id: int | None = None) -> bool:
        if email is not None and email == self.bot_email:
            return True
        return user_id is not None and user_id == self.bot_user_id
