# src/zulip_companion/llm/tools.py

"""
Read-only Zulip lookups exposed to the model as OpenAI function tools.

Every tool result is the raw JSON returned by the Zulip endpoint. Failures
are reported back to the model as {"ok": false, "error": ...} instead of
aborting the answer.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..core.ports import MessagingGateway

logger = logging.getLogger(__name__)

MAX_RESULTS = 100
DEFAULT_RESULTS = 20

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _object(properties: dict[str, Any] | None = None, required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties or {}, "required": required or []}


def _int_prop(description: str) -> dict[str, Any]:
    return {"type": "integer", "description": description}


def _str_prop(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def _count(args: dict[str, Any], key: str) -> int:
    raw = args.get(key)
    try:
        n = int(raw) if raw is not None else DEFAULT_RESULTS
    except (TypeError, ValueError):
        n = DEFAULT_RESULTS
    return max(1, min(n, MAX_RESULTS))


class ZulipToolbox:
    def __init__(self, client: MessagingGateway) -> None:
        self._client = client
        self._tools = {spec.name: spec for spec in self._build()}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [spec.schema() for spec in self._tools.values()]

    async def invoke(self, name: str, raw_arguments: str | None) -> str:
        spec = self._tools.get(name)
        if spec is None:
            return json.dumps({"ok": False, "error": f"Unknown tool: {name}"})

        try:
            args = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError:
            return json.dumps({"ok": False, "error": f"Invalid JSON arguments for `{name}`."})
        if not isinstance(args, dict):
            return json.dumps({"ok": False, "error": f"Arguments for `{name}` must be an object."})

        try:
            result = await spec.handler(args)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return json.dumps({"ok": False, "error": str(e) or e.__class__.__name__})

        logger.debug("Tool %s ok", name)
        return json.dumps(result, ensure_ascii=False)

    # ---- tool definitions ----

    def _build(self) -> list[ToolSpec]:
        call = self._client.call_endpoint

        async def list_channels(_: dict[str, Any]) -> Any:
            return await call("/streams")

        async def channel_topics(args: dict[str, Any]) -> Any:
            return await call(f"/users/me/{int(args['stream_id'])}/topics")

        async def list_users(_: dict[str, Any]) -> Any:
            return await call("/users")

        async def get_user(args: dict[str, Any]) -> Any:
            return await call(f"/users/{int(args['user_id'])}")

        async def search_messages(args: dict[str, Any]) -> Any:
            return await call(
                "/messages",
                {
                    "narrow": [{"operator": "search", "operand": str(args["query"])}],
                    "anchor": "newest",
                    "num_before": _count(args, "num_results"),
                    "num_after": 0,
                },
            )

        async def get_messages(args: dict[str, Any]) -> Any:
            narrow = [{"operator": "channel", "operand": str(args["channel"])}]
            if args.get("topic"):
                narrow.append({"operator": "topic", "operand": str(args["topic"])})
            return await call(
                "/messages",
                {
                    "narrow": narrow,
                    "anchor": "newest",
                    "num_before": _count(args, "num_messages"),
                    "num_after": 0,
                },
            )

        async def channel_subscribers(args: dict[str, Any]) -> Any:
            return await call(f"/streams/{int(args['stream_id'])}/members")

        async def user_presence(args: dict[str, Any]) -> Any:
            return await call(f"/users/{int(args['user_id'])}/presence")

        return [
            ToolSpec(
                "zulip_list_channels",
                "List all channels (streams) in the Zulip organization, with their descriptions.",
                _object(),
                list_channels,
            ),
            ToolSpec(
                "zulip_get_channel_topics",
                "List recent topics in a channel/stream.",
                _object({"stream_id": _int_prop("The numeric ID of the channel")}, ["stream_id"]),
                channel_topics,
            ),
            ToolSpec(
                "zulip_list_users",
                "List all users in the Zulip organization with their names, emails, roles, and active status.",
                _object(),
                list_users,
            ),
            ToolSpec(
                "zulip_get_user",
                "Get detailed profile information for a specific user by their user ID.",
                _object({"user_id": _int_prop("The user's numeric ID")}, ["user_id"]),
                get_user,
            ),
            ToolSpec(
                "zulip_search_messages",
                "Search Zulip messages. Supports Zulip search operators like 'channel:', 'topic:', "
                "'sender:', 'has:', 'is:' and free text.",
                _object(
                    {
                        "query": _str_prop("Zulip search query, e.g. 'channel:general topic:meeting'"),
                        "num_results": _int_prop("Number of results to return (default 20, max 100)"),
                    },
                    ["query"],
                ),
                search_messages,
            ),
            ToolSpec(
                "zulip_get_messages",
                "Fetch recent messages from a channel and optionally a specific topic.",
                _object(
                    {
                        "channel": _str_prop("Channel/stream name"),
                        "topic": _str_prop("Topic name (optional)"),
                        "num_messages": _int_prop("Number of messages to fetch (default 20, max 100)"),
                    },
                    ["channel"],
                ),
                get_messages,
            ),
            ToolSpec(
                "zulip_get_channel_subscribers",
                "Get the list of subscriber user IDs for a channel/stream.",
                _object({"stream_id": _int_prop("The numeric ID of the channel")}, ["stream_id"]),
                channel_subscribers,
            ),
            ToolSpec(
                "zulip_get_user_presence",
                "Check if a user is currently active, idle, or offline.",
                _object({"user_id": _int_prop("The user's numeric ID")}, ["user_id"]),
                user_presence,
            ),
        ]
