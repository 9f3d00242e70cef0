# src/zulip_companion/llm/client.py

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings
from ..core.ports import UpdateCallback
from .tools import ZulipToolbox

logger = logging.getLogger(__name__)

MODEL_PARK_SECONDS = 3600.0


class AnswerEngineError(RuntimeError):
    """The answering engine could not produce an answer."""


def build_system_prompt(context: str) -> str:
    return "\n".join(
        [
            "You are a helpful assistant bot in a Zulip chat.",
            "You can look up channels, topics, users and messages in this Zulip organization with the provided tools.",
            "Answer questions clearly and concisely. Use Zulip-compatible markdown formatting.",
            "",
            "Here is the recent conversation context from this Zulip topic:",
            "---",
            context,
            "---",
        ]
    )


def _is_auth_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError))


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    # APITimeoutError is a subclass of APIConnectionError.
    return isinstance(exc, (openai.APIConnectionError, httpx.TransportError))


@dataclass(slots=True)
class _ToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(slots=True)
class _Turn:
    """One streamed model turn: its text and any tool calls it requested."""

    model: str
    text: str = ""
    tool_calls: list[_ToolCall] = field(default_factory=list)

    def assistant_message(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                }
                for tc in self.tool_calls
            ]
        return msg


class OpenAIAnswerEngine:
    """
    Answering engine over an OpenAI-compatible chat completions API.

    Behavior:
    - Streams every turn; `on_update` receives the cumulative text of the turn.
    - Tool calls are executed with the toolbox and fed back, up to `max_turns` turns.
    - Tries models in configured order when a model fails before producing output:
      404 parks the model for an hour, rate limit / network / other errors try the
      next model, authentication errors fail immediately.
    """

    def __init__(
            self,
            settings: Settings,
            *,
            toolbox: ZulipToolbox | None = None,
            client: Any = None,
    ) -> None:
        if not settings.llm_models:
            raise AnswerEngineError("LLM model list is empty. Set LLM_MODELS in your .env.")

        self._models = [m.strip() for m in settings.llm_models if m.strip()]
        self._headers = dict(settings.extra_headers or {})
        self._max_turns = max(1, int(settings.llm_max_turns))
        self._toolbox = toolbox
        self._parked: dict[str, float] = {}  # model -> retry_at (monotonic)

        if client is None:
            if not settings.llm_api_key:
                raise AnswerEngineError("LLM API key is not set. Set OPENAI_API_KEY or OPENROUTER_API_KEY.")
            # No SDK retries: a failing model falls through to the next one quickly.
            client = AsyncOpenAI(
                base_url=settings.llm_base_url,
                api_key=settings.llm_api_key,
                timeout=httpx.Timeout(
                    connect=settings.llm_connect_timeout_seconds,
                    read=settings.llm_read_timeout_seconds,
                    write=10.0,
                    pool=settings.llm_connect_timeout_seconds,
                ),
                max_retries=0,
            )
        self._client = client

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()

    async def ask(
            self,
            question: str,
            context: str,
            *,
            on_update: UpdateCallback | None = None,
    ) -> str:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(context)},
            {"role": "user", "content": question},
        ]

        for turn_no in range(1, self._max_turns + 1):
            turn = await self._run_turn(messages, on_update)
            if not turn.tool_calls:
                if not turn.text.strip():
                    raise AnswerEngineError(f"Model {turn.model} returned an empty answer")
                logger.debug("LLM: answered with model=%s after %s turn(s)", turn.model, turn_no)
                return turn.text

            messages.append(turn.assistant_message())
            for tc in turn.tool_calls:
                logger.info("LLM: tool call %s", tc.name)
                if self._toolbox is None:
                    result = json.dumps({"ok": False, "error": "Tools are not available."})
                else:
                    result = await self._toolbox.invoke(tc.name, tc.arguments)
                messages.append({"role": "tool", "tool_call_id": tc.id, "content": result})

        raise AnswerEngineError(f"No final answer within {self._max_turns} turns")

    async def _run_turn(self, messages: list[dict[str, Any]], on_update: UpdateCallback | None) -> _Turn:
        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = self._parked.get(model)
            if retry_at is not None and retry_at > now:
                continue

            turn = _Turn(model=model)
            produced = False
            try:
                stream = await self._client.chat.completions.create(**self._request(model, messages))
                async for chunk in stream:
                    if self._absorb(turn, chunk):
                        produced = True
                        if on_update is not None and turn.text:
                            on_update(turn.text)
                return turn

            except Exception as e:
                if produced:
                    # Output already reached the user; switching models would garble it.
                    raise AnswerEngineError(f"Model {model} failed mid-answer") from e

                last_error = e
                if _is_auth_error(e):
                    raise AnswerEngineError("LLM authentication failed. Check your API key.") from e
                if _is_not_found_error(e):
                    self._parked[model] = time.monotonic() + MODEL_PARK_SECONDS
                    logger.info("LLM: model not available (404): %s", model)
                elif _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                elif _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                else:
                    logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)

        raise AnswerEngineError("All LLM models failed.") from last_error

    def _request(self, model: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        req: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
        }
        if self._headers:
            req["extra_headers"] = self._headers
        if self._toolbox is not None:
            req["tools"] = self._toolbox.schemas()
        return req

    @staticmethod
    def _absorb(turn: _Turn, chunk: Any) -> bool:
        """Fold one stream chunk into the turn. True if it carried content or a tool call."""
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return False
        delta = getattr(choices[0], "delta", None)
        if delta is None:
            return False

        got = False
        content = getattr(delta, "content", None)
        if content:
            turn.text += content
            got = True

        for tc_delta in getattr(delta, "tool_calls", None) or []:
            index = getattr(tc_delta, "index", None)
            if index is None:
                index = len(turn.tool_calls)
            while len(turn.tool_calls) <= index:
                turn.tool_calls.append(_ToolCall())
            call = turn.tool_calls[index]

            if getattr(tc_delta, "id", None):
                call.id = tc_delta.id
            fn = getattr(tc_delta, "function", None)
            if fn is not None:
                if getattr(fn, "name", None):
                    call.name += fn.name
                if getattr(fn, "arguments", None):
                    call.arguments += fn.arguments
            got = True

        return got
