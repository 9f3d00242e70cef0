# src/zulip_companion/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the Zulip connector and the LLM provider swappable and makes testing easier.
"""

from typing import Any, Callable, Protocol, Sequence

from .models import Channel, Event, Message, QueueRegistration, User

UpdateCallback = Callable[[str], None]
# Receives the cumulative answer text so far (not a delta).


class MessagingGateway(Protocol):
    """Remote messaging platform (Zulip REST API)."""

    async def get_profile(self) -> User: ...

    async def register_queue(self, event_types: Sequence[str]) -> QueueRegistration: ...
    async def get_events(self, queue_id: str, last_event_id: int) -> list[Event]: ...

    async def send_message(self, channel: str, topic: str, content: str) -> int: ...
    async def edit_message(self, message_id: int, content: str) -> bool: ...
    async def delete_message(self, message_id: int) -> bool: ...

    async def add_reaction(self, message_id: int, emoji_name: str) -> None: ...
    async def remove_reaction(self, message_id: int, emoji_name: str) -> None: ...

    async def fetch_messages(
            self,
            channel: str,
            topic: str,
            *,
            anchor: str | int = "newest",
            num_before: int = 20,
            num_after: int = 0,
    ) -> list[Message]: ...

    async def get_message(self, message_id: int) -> Message | None: ...

    async def list_channels(self) -> list[Channel]: ...
    async def get_channel_members(self, stream_id: int) -> list[int]: ...
    async def create_channel(self, name: str, description: str, principals: Sequence[str]) -> bool: ...
    async def set_channel_folder(self, stream_id: int, folder_id: int) -> None: ...

    async def list_users(self) -> list[User]: ...
    async def get_user(self, user_id: int) -> User | None: ...

    async def call_endpoint(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...


class AnswerEngine(Protocol):
    """Opaque question answering engine with a streaming callback."""

    async def ask(
            self,
            question: str,
            context: str,
            *,
            on_update: UpdateCallback | None = None,
    ) -> str: ...
