# src/zulip_companion/core/streaming.py

"""
Streaming reply composer.

A reply starts as a placeholder message with a spinner, is edited in place as
the answer grows, and ends either with one final edit or (for long answers)
with the first chunk edited in place and the remaining chunks posted after it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from .ports import MessagingGateway

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 9500
SPINNER_INTERVAL_SECONDS = 2.0
WORD_FLUSH_THRESHOLD = 40

PLACEHOLDER_TEXT = ":loading: Thinking..."


def split_message(text: str, max_len: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """
    Split text into chunks of at most max_len characters.

    Preferred cut points: the last paragraph break, then the last line break,
    then a hard cut at max_len. Whitespace around the cuts and at both ends
    is trimmed, so no chunk is empty.
    """
    chunks: list[str] = []
    remaining = text.strip()

    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break

        # A "\n\n" ending exactly at max_len still leaves the chunk within bounds after rstrip.
        cut = remaining.rfind("\n\n", 0, max_len + 2)
        if cut <= 0:
            cut = remaining.rfind("\n", 0, max_len + 1)
        if cut <= 0:
            cut = max_len

        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()

    return chunks


async def send_text(client: MessagingGateway, channel: str, topic: str, text: str) -> list[int]:
    """Send possibly-long text as consecutive messages. Returns the message ids."""
    ids: list[int] = []
    for chunk in split_message(text):
        ids.append(await client.send_message(channel, topic, chunk))
    return ids


def _word_count(text: str) -> int:
    return len(text.split())


class StreamingReply:
    """
    One in-flight reply. Create with `await StreamingReply.start(...)`.

    `update` never blocks: edits are scheduled as background tasks and their
    failures are ignored. After `finalize` or `cancel` every call is a no-op.
    """

    def __init__(
            self,
            client: MessagingGateway,
            channel: str,
            topic: str,
            message_id: int,
            *,
            spinner_interval: float = SPINNER_INTERVAL_SECONDS,
            flush_words: int = WORD_FLUSH_THRESHOLD,
    ) -> None:
        self._client = client
        self.channel = channel
        self.topic = topic
        self.message_id = message_id

        self._spinner_interval = spinner_interval
        self._flush_words = flush_words

        self._started_at = time.monotonic()
        self._spinner: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._flushed_words = 0
        self._finished = False

    @classmethod
    async def start(
            cls,
            client: MessagingGateway,
            channel: str,
            topic: str,
            *,
            spinner_interval: float = SPINNER_INTERVAL_SECONDS,
            flush_words: int = WORD_FLUSH_THRESHOLD,
    ) -> StreamingReply:
        message_id = await client.send_message(channel, topic, PLACEHOLDER_TEXT)
        reply = cls(
            client,
            channel,
            topic,
            message_id,
            spinner_interval=spinner_interval,
            flush_words=flush_words,
        )
        reply._spinner = asyncio.create_task(reply._spin())
        return reply

    @property
    def finished(self) -> bool:
        return self._finished

    async def _spin(self) -> None:
        while True:
            await asyncio.sleep(self._spinner_interval)
            elapsed = int(time.monotonic() - self._started_at)
            await self._safe_edit(f"{PLACEHOLDER_TEXT} ({elapsed}s)")

    def _stop_spinner(self) -> None:
        if self._spinner is not None:
            self._spinner.cancel()
            self._spinner = None

    async def _safe_edit(self, content: str) -> None:
        try:
            await self._client.edit_message(self.message_id, content)
        except Exception:
            logger.debug("Streaming edit failed msg_id=%s", self.message_id, exc_info=True)

    def update(self, text: str) -> None:
        """Receive the cumulative answer text so far."""
        if self._finished:
            return
        self._stop_spinner()

        words = _word_count(text)
        if words - self._flushed_words < self._flush_words:
            return
        self._flushed_words = words

        task = asyncio.create_task(self._safe_edit(text[:MAX_MESSAGE_LENGTH]))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _drain(self) -> None:
        self._stop_spinner()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def finalize(self, text: str) -> None:
        if self._finished:
            return
        self._finished = True
        await self._drain()

        if len(text) <= MAX_MESSAGE_LENGTH:
            await self._client.edit_message(self.message_id, text)
            return

        first, *rest = split_message(text)
        await self._client.edit_message(self.message_id, first)
        for chunk in rest:
            await self._client.send_message(self.channel, self.topic, chunk)

    async def cancel(self) -> None:
        if self._finished:
            return
        self._finished = True
        await self._drain()
        with contextlib.suppress(Exception):
            await self._client.delete_message(self.message_id)
