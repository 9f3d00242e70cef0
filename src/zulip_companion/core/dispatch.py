# src/zulip_companion/core/dispatch.py

"""
Mention handling.

A mention goes through the service chain first; the first service that claims
it wins. Unclaimed mentions are answered by the answering engine through a
streaming reply.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .context import ServiceContext
from .models import Message, MessageEvent
from .ports import AnswerEngine
from .streaming import StreamingReply, send_text
from .text import html_to_text

if TYPE_CHECKING:
    from ..services.base import BaseService

logger = logging.getLogger(__name__)

EMPTY_QUESTION_REPLY = (
    "It looks like you mentioned me but didn't include a question. How can I help?"
)
APOLOGY_REPLY = "Sorry, I ran into a problem while answering that. Please try again."


class MessageRouter:
    def __init__(
            self,
            ctx: ServiceContext,
            services: Sequence[BaseService],
            engine: AnswerEngine,
    ) -> None:
        self.ctx = ctx
        self.services = services
        self.engine = engine

    def is_eligible(self, event: MessageEvent) -> bool:
        msg = event.message
        if not msg.is_stream:
            return False
        if self.ctx.is_bot(email=msg.sender_email):
            return False
        return event.mentioned

    async def dispatch(self, message: Message) -> bool:
        """Offer the message to each service in order. True if one claimed it."""
        for service in self.services:
            try:
                if await service.on_message(message):
                    logger.debug("Message %s claimed by service %s", message.id, service.name)
                    return True
            except Exception:
                logger.exception("Service %s failed on message %s", service.name, message.id)
        return False

    async def handle_message(self, event: MessageEvent) -> None:
        if not self.is_eligible(event):
            return

        msg = event.message
        if await self.dispatch(msg):
            return

        await self._answer(msg)

    async def _build_context(self, msg: Message) -> str:
        history = await self.ctx.client.fetch_messages(
            msg.channel,
            msg.topic,
            anchor="newest",
            num_before=self.ctx.settings.context_messages,
        )
        lines = [
            f"{m.sender_full_name}: {html_to_text(m.content)}"
            for m in history
            if m.id != msg.id
        ]
        return "\n".join(lines)

    async def _answer(self, msg: Message) -> None:
        client = self.ctx.client
        reply = await StreamingReply.start(client, msg.channel, msg.topic)

        try:
            question = html_to_text(msg.content)
            if not question:
                await reply.cancel()
                await send_text(client, msg.channel, msg.topic, EMPTY_QUESTION_REPLY)
                return

            context = await self._build_context(msg)
            logger.info(
                "Answering message %s from %s in %s > %s",
                msg.id,
                msg.sender_email,
                msg.channel,
                msg.topic,
            )
            answer = await self.engine.ask(question, context, on_update=reply.update)
            await reply.finalize(answer)

        except Exception:
            logger.exception("Failed to answer message %s", msg.id)
            await reply.cancel()
            try:
                await send_text(client, msg.channel, msg.topic, APOLOGY_REPLY)
            except Exception:
                logger.exception("Failed to send apology for message %s", msg.id)
