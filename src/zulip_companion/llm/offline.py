# src/zulip_companion/llm/offline.py

from __future__ import annotations

from ..core.ports import UpdateCallback

OFFLINE_ANSWER = (
    "Offline mode: no language model is configured for this bot.\n"
    "Set OPENAI_API_KEY or OPENROUTER_API_KEY (and LLM_MODELS) to enable real answers."
)


class OfflineAnswerEngine:
    """
    Deterministic engine used when no external API is configured.

    Dashboards and tasks keep working; mentions get a fixed explanatory answer.
    """

    async def ask(
            self,
            question: str,
            context: str,
            *,
            on_update: UpdateCallback | None = None,
    ) -> str:
        text = f"{OFFLINE_ANSWER}\n\nYou asked: {question}"
        if on_update is not None:
            on_update(text)
        return text
