# src/zulip_companion/connectors/zulip_client.py

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import httpx

from ..core.models import Channel, Event, Message, QueueRegistration, User, parse_event

logger = logging.getLogger(__name__)

# Zulip holds a long-poll open for up to ~90s before answering with a heartbeat.
_LONG_POLL_READ_TIMEOUT = 120.0


class ZulipApiError(RuntimeError):
    """A Zulip API call answered with result != "success" (or unparseable body)."""

    def __init__(self, message: str, *, code: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class BadEventQueueError(ZulipApiError):
    """The event queue id is no longer valid (expired or garbage-collected by the server)."""


def _encode_params(params: dict[str, Any] | None) -> dict[str, str]:
    """Zulip expects form/query values as strings; lists and dicts are JSON-encoded."""
    out: dict[str, str] = {}
    for key, val in (params or {}).items():
        if val is None:
            continue
        if isinstance(val, bool):
            out[key] = "true" if val else "false"
        elif isinstance(val, (list, dict)):
            out[key] = json.dumps(val)
        else:
            out[key] = str(val)
    return out


class ZulipClient:
    """
    Async Zulip REST client (implements the MessagingGateway port).

    Every response is validated into the dataclasses of core.models; callers never
    see raw payloads except through call_endpoint (used by LLM tools).
    """

    def __init__(
            self,
            *,
            realm: str,
            email: str,
            api_key: str,
            timeout_seconds: float = 30.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._realm = realm.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=f"{self._realm}/api/v1",
            auth=(email, api_key),
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": "zulip-companion"},
            transport=transport,
        )

    @property
    def realm(self) -> str:
        return self._realm

    async def aclose(self) -> None:
        await self._http.aclose()

    # ---- low-level helpers ----

    async def _request(
            self,
            method: str,
            path: str,
            params: dict[str, Any] | None = None,
            *,
            check: bool = True,
            timeout: httpx.Timeout | None = None,
    ) -> dict[str, Any]:
        encoded = _encode_params(params)
        kwargs: dict[str, Any] = {}
        if method in ("GET", "DELETE"):
            kwargs["params"] = encoded
        else:
            kwargs["data"] = encoded
        if timeout is not None:
            kwargs["timeout"] = timeout

        resp = await self._http.request(method, path, **kwargs)

        try:
            data = resp.json()
        except ValueError as e:
            raise ZulipApiError(
                f"{method} {path}: non-JSON response (HTTP {resp.status_code})",
                status_code=resp.status_code,
            ) from e
        if not isinstance(data, dict):
            raise ZulipApiError(f"{method} {path}: unexpected response shape", status_code=resp.status_code)

        if check and data.get("result") != "success":
            code = str(data.get("code") or "")
            msg = str(data.get("msg") or "unknown error")
            if code == "BAD_EVENT_QUEUE_ID":
                raise BadEventQueueError(msg, code=code, status_code=resp.status_code)
            raise ZulipApiError(f"{method} {path}: {msg}", code=code, status_code=resp.status_code)
        return data

    # ---- identity ----

    async def get_profile(self) -> User:
        data = await self._request("GET", "/users/me")
        return User.from_payload(data)

    # ---- event queue ----

    async def register_queue(self, event_types: Sequence[str]) -> QueueRegistration:
        data = await self._request("POST", "/register", {"event_types": list(event_types)})
        return QueueRegistration.from_payload(data)

    async def get_events(self, queue_id: str, last_event_id: int) -> list[Event]:
        data = await self._request(
            "GET",
            "/events",
            {"queue_id": queue_id, "last_event_id": last_event_id},
            timeout=httpx.Timeout(10.0, read=_LONG_POLL_READ_TIMEOUT),
        )
        events: list[Event] = []
        for raw in data.get("events") or []:
            if not isinstance(raw, dict):
                continue
            try:
                events.append(parse_event(raw))
            except ValueError:
                logger.warning("Dropping malformed event: %r", raw)
        return events

    # ---- messages ----

    async def send_message(self, channel: str, topic: str, content: str) -> int:
        data = await self._request(
            "POST",
            "/messages",
            {"type": "stream", "to": channel, "topic": topic, "content": content},
        )
        msg_id = data.get("id")
        if not isinstance(msg_id, int):
            raise ZulipApiError("send_message: response without message id")
        return msg_id

    async def edit_message(self, message_id: int, content: str) -> bool:
        """
        Replace a message's content. Returns False when Zulip refuses the edit,
        which is how a deleted message shows up. Transport errors propagate.
        """
        data = await self._request("PATCH", f"/messages/{message_id}", {"content": content}, check=False)
        return data.get("result") == "success"

    async def delete_message(self, message_id: int) -> bool:
        data = await self._request("DELETE", f"/messages/{message_id}", check=False)
        return data.get("result") == "success"

    async def add_reaction(self, message_id: int, emoji_name: str) -> None:
        await self._request("POST", f"/messages/{message_id}/reactions", {"emoji_name": emoji_name})

    async def remove_reaction(self, message_id: int, emoji_name: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}/reactions", {"emoji_name": emoji_name})

    async def fetch_messages(
            self,
            channel: str,
            topic: str,
            *,
            anchor: str | int = "newest",
            num_before: int = 20,
            num_after: int = 0,
    ) -> list[Message]:
        data = await self._request(
            "GET",
            "/messages",
            {
                "narrow": [
                    {"operator": "channel", "operand": channel},
                    {"operator": "topic", "operand": topic},
                ],
                "anchor": anchor,
                "num_before": num_before,
                "num_after": num_after,
            },
        )
        return [Message.from_payload(m) for m in data.get("messages") or [] if isinstance(m, dict)]

    async def get_message(self, message_id: int) -> Message | None:
        data = await self._request("GET", f"/messages/{message_id}", check=False)
        raw = data.get("message")
        if data.get("result") != "success" or not isinstance(raw, dict):
            return None
        return Message.from_payload(raw)

    # ---- channels ----

    async def list_channels(self) -> list[Channel]:
        data = await self._request("GET", "/streams")
        return [Channel.from_payload(s) for s in data.get("streams") or [] if isinstance(s, dict)]

    async def get_channel_members(self, stream_id: int) -> list[int]:
        data = await self._request("GET", f"/streams/{stream_id}/members")
        return [int(uid) for uid in data.get("subscribers") or [] if isinstance(uid, int)]

    async def create_channel(self, name: str, description: str, principals: Sequence[str]) -> bool:
        """Subscribe (creating if needed). True only if the channel is confirmed in the response."""
        params: dict[str, Any] = {"subscriptions": [{"name": name, "description": description}]}
        if principals:
            params["principals"] = list(principals)
        data = await self._request("POST", "/users/me/subscriptions", params)

        wanted = name.lower()
        for key in ("subscribed", "already_subscribed"):
            groups = data.get(key) or {}
            if not isinstance(groups, dict):
                continue
            for names in groups.values():
                if any(str(n).lower() == wanted for n in names or []):
                    return True
        return False

    async def set_channel_folder(self, stream_id: int, folder_id: int) -> None:
        await self._request("PATCH", f"/streams/{stream_id}", {"folder_id": folder_id})

    # ---- users ----

    async def list_users(self) -> list[User]:
        data = await self._request("GET", "/users")
        return [User.from_payload(u) for u in data.get("members") or [] if isinstance(u, dict)]

    async def get_user(self, user_id: int) -> User | None:
        data = await self._request("GET", f"/users/{user_id}", check=False)
        raw = data.get("user")
        if data.get("result") != "success" or not isinstance(raw, dict):
            return None
        return User.from_payload(raw)

    # ---- raw (read-only) ----

    async def call_endpoint(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request("GET", path, params, check=False)
