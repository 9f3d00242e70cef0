# tests/fakes.py

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from zulip_companion.core.models import Channel, Event, Message, QueueRegistration, User
from zulip_companion.core.ports import UpdateCallback


def mention_html(user_id: int, name: str) -> str:
    return f'<span class="user-mention" data-user-id="{user_id}">@{name}</span>'


def make_message(
        msg_id: int,
        content: str = "<p>hello</p>",
        *,
        channel: str = "general",
        topic: str = "lunch",
        sender_id: int = 1,
        sender_email: str = "alice@example.com",
        sender_full_name: str = "Alice",
        msg_type: str = "stream",
) -> Message:
    return Message(
        id=msg_id,
        sender_id=sender_id,
        sender_email=sender_email,
        sender_full_name=sender_full_name,
        type=msg_type,
        channel=channel,
        topic=topic,
        content=content,
    )


@dataclass(slots=True)
class SentMessage:
    id: int
    channel: str
    topic: str
    content: str


@dataclass
class FakeGateway:
    """
    In-memory MessagingGateway used by unit tests.

    - Captures every write for assertions
    - Serves reads from plain dicts/lists the test fills in
    - `events` is a script for get_events: each entry is a list of events or an exception
    - `send_errors` make the next sends raise, in order
    """

    sent: list[SentMessage] = field(default_factory=list)
    edits: list[tuple[int, str]] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)
    reactions_added: list[tuple[int, str]] = field(default_factory=list)
    reactions_removed: list[tuple[int, str]] = field(default_factory=list)

    messages: dict[int, Message] = field(default_factory=dict)
    channels: list[Channel] = field(default_factory=list)
    members: dict[int, list[int]] = field(default_factory=dict)
    users: dict[int, User] = field(default_factory=dict)

    created_channels: list[tuple[str, str, list[str]]] = field(default_factory=list)
    folder_moves: list[tuple[int, int]] = field(default_factory=list)
    create_channel_result: bool = True

    edit_result: bool = True
    edit_error: Exception | None = None
    send_errors: list[Exception] = field(default_factory=list)

    events: list[Any] = field(default_factory=list)
    registrations: int = 0
    endpoint_calls: list[tuple[str, dict[str, Any] | None]] = field(default_factory=list)

    next_id: int = 1000

    async def get_profile(self) -> User:
        return User(user_id=99, email="bot@example.com", full_name="Companion")

    async def register_queue(self, event_types: Sequence[str]) -> QueueRegistration:
        self.registrations += 1
        return QueueRegistration(queue_id=f"q{self.registrations}", last_event_id=-1)

    async def get_events(self, queue_id: str, last_event_id: int) -> list[Event]:
        if not self.events:
            return []
        item = self.events.pop(0)
        if isinstance(item, Exception):
            raise item
        return list(item)

    async def send_message(self, channel: str, topic: str, content: str) -> int:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.next_id += 1
        self.sent.append(SentMessage(self.next_id, channel, topic, content))
        return self.next_id

    async def edit_message(self, message_id: int, content: str) -> bool:
        if self.edit_error is not None:
            raise self.edit_error
        self.edits.append((message_id, content))
        return self.edit_result

    async def delete_message(self, message_id: int) -> bool:
        self.deleted.append(message_id)
        return True

    async def add_reaction(self, message_id: int, emoji_name: str) -> None:
        self.reactions_added.append((message_id, emoji_name))

    async def remove_reaction(self, message_id: int, emoji_name: str) -> None:
        self.reactions_removed.append((message_id, emoji_name))

    async def fetch_messages(
            self,
            channel: str,
            topic: str,
            *,
            anchor: str | int = "newest",
            num_before: int = 20,
            num_after: int = 0,
    ) -> list[Message]:
        in_topic = sorted(
            (m for m in self.messages.values() if m.channel == channel and m.topic == topic),
            key=lambda m: m.id,
        )
        if anchor == "newest":
            return in_topic[-(num_before + 1):]
        anchor_id = int(anchor)
        before = [m for m in in_topic if m.id < anchor_id][-num_before:] if num_before else []
        at = [m for m in in_topic if m.id == anchor_id]
        return before + at

    async def get_message(self, message_id: int) -> Message | None:
        return self.messages.get(message_id)

    async def list_channels(self) -> list[Channel]:
        return list(self.channels)

    async def get_channel_members(self, stream_id: int) -> list[int]:
        return list(self.members.get(stream_id, []))

    async def create_channel(self, name: str, description: str, principals: Sequence[str]) -> bool:
        self.created_channels.append((name, description, list(principals)))
        if self.create_channel_result:
            new_id = 500 + len(self.channels)
            self.channels.append(Channel(stream_id=new_id, name=name))
        return self.create_channel_result

    async def set_channel_folder(self, stream_id: int, folder_id: int) -> None:
        self.folder_moves.append((stream_id, folder_id))

    async def list_users(self) -> list[User]:
        return list(self.users.values())

    async def get_user(self, user_id: int) -> User | None:
        return self.users.get(user_id)

    async def call_endpoint(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.endpoint_calls.append((path, params))
        return {"result": "success", "path": path}

    # ---- helpers ----

    def sent_to(self, channel: str, topic: str | None = None) -> list[SentMessage]:
        return [s for s in self.sent if s.channel == channel and (topic is None or s.topic == topic)]


class FakeAnswerEngine:
    """
    Deterministic answering engine for unit tests.

    - Captures calls for assertions
    - Streams `chunks` through on_update (cumulative), then returns the full text
    """

    def __init__(self, answer: str = "ok", *, error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def ask(
            self,
            question: str,
            context: str,
            *,
            on_update: UpdateCallback | None = None,
    ) -> str:
        self.calls.append((question, context))
        if self.error is not None:
            raise self.error
        if on_update is not None:
            on_update(self.answer)
        return self.answer
