# src/zulip_companion/core/models.py

"""
Typed shapes of the Zulip payloads the core works with.

The gateway validates raw JSON into these records at the boundary, so the rest
of the code never indexes into untyped dicts. `from_payload` raises ValueError
when a required field is missing or has the wrong type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


def _req_int(data: Mapping[str, Any], key: str) -> int:
    val = data.get(key)
    if isinstance(val, bool) or not isinstance(val, int):
        raise ValueError(f"expected int field {key!r}, got {val!r}")
    return val


def _opt_int(data: Mapping[str, Any], key: str) -> int | None:
    val = data.get(key)
    if val is None or isinstance(val, bool) or not isinstance(val, int):
        return None
    return val


def _str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    val = data.get(key)
    return val if isinstance(val, str) else default


@dataclass(frozen=True, slots=True)
class Message:
    id: int
    sender_id: int | None
    sender_email: str
    sender_full_name: str
    type: str  # "stream" | "private"
    channel: str
    topic: str
    content: str  # rendered HTML

    @property
    def is_stream(self) -> bool:
        return self.type == "stream"

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Message:
        msg_type = _str(data, "type")
        # For private messages display_recipient is a list of users.
        recipient = data.get("display_recipient")
        channel = recipient if isinstance(recipient, str) else ""
        return cls(
            id=_req_int(data, "id"),
            sender_id=_opt_int(data, "sender_id"),
            sender_email=_str(data, "sender_email"),
            sender_full_name=_str(data, "sender_full_name"),
            type=msg_type,
            channel=channel,
            topic=_str(data, "subject", _str(data, "topic")),
            content=_str(data, "content"),
        )


@dataclass(frozen=True, slots=True)
class MessageEvent:
    id: int
    message: Message
    flags: tuple[str, ...]

    @property
    def mentioned(self) -> bool:
        return "mentioned" in self.flags


@dataclass(frozen=True, slots=True)
class ReactionEvent:
    id: int
    op: str  # "add" | "remove"
    user_id: int
    message_id: int
    emoji_name: str
    emoji_code: str = ""
    reaction_type: str = ""

    @property
    def added(self) -> bool:
        return self.op == "add"


@dataclass(frozen=True, slots=True)
class OtherEvent:
    """Any event type the core does not act on (heartbeat, etc.)."""

    id: int
    type: str


Event = MessageEvent | ReactionEvent | OtherEvent


def parse_event(data: Mapping[str, Any]) -> Event:
    event_id = _req_int(data, "id")
    event_type = _str(data, "type")

    if event_type == "message":
        raw_msg = data.get("message")
        if not isinstance(raw_msg, Mapping):
            raise ValueError("message event without a message object")
        flags = data.get("flags") or []
        return MessageEvent(
            id=event_id,
            message=Message.from_payload(raw_msg),
            flags=tuple(str(f) for f in flags if isinstance(f, str)),
        )

    if event_type == "reaction":
        return ReactionEvent(
            id=event_id,
            op=_str(data, "op"),
            user_id=_req_int(data, "user_id"),
            message_id=_req_int(data, "message_id"),
            emoji_name=_str(data, "emoji_name"),
            emoji_code=_str(data, "emoji_code"),
            reaction_type=_str(data, "reaction_type"),
        )

    return OtherEvent(id=event_id, type=event_type)


@dataclass(frozen=True, slots=True)
class QueueRegistration:
    queue_id: str
    last_event_id: int

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> QueueRegistration:
        queue_id = data.get("queue_id")
        if not isinstance(queue_id, str) or not queue_id:
            raise ValueError("register response without queue_id")
        return cls(queue_id=queue_id, last_event_id=_req_int(data, "last_event_id"))


@dataclass(frozen=True, slots=True)
class Channel:
    stream_id: int
    name: str
    folder_id: int | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Channel:
        return cls(
            stream_id=_req_int(data, "stream_id"),
            name=_str(data, "name"),
            folder_id=_opt_int(data, "folder_id"),
        )


@dataclass(frozen=True, slots=True)
class User:
    user_id: int
    email: str
    full_name: str

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> User:
        return cls(
            user_id=_req_int(data, "user_id"),
            email=_str(data, "email"),
            full_name=_str(data, "full_name"),
        )


@dataclass(frozen=True, slots=True)
class Mention:
    """A user mentioned in a message (parsed from rendered HTML)."""

    user_id: int
    user_name: str

    def silent(self) -> str:
        """Zulip silent-mention markup (no notification)."""
        return f"@_**{self.user_name}|{self.user_id}**"
