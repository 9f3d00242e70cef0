# src/zulip_companion/core/event_loop.py

"""
Long-poll event loop.

Registers an event queue, pulls events with the last seen id as cursor and
hands each one off as an independent task. A queue that the server has
dropped is re-registered immediately; any other failure waits a fixed backoff.

Events that arrive between queue expiry and re-registration are not replayed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any

from ..connectors.zulip_client import BadEventQueueError
from .context import ServiceContext
from .dispatch import MessageRouter
from .models import MessageEvent, ReactionEvent

logger = logging.getLogger(__name__)

EVENT_TYPES = ("message", "reaction")

Sleep = Callable[[float], Awaitable[None]]


class EventLoop:
    def __init__(
            self,
            ctx: ServiceContext,
            router: MessageRouter,
            services: Sequence[Any],
            *,
            backoff_seconds: float | None = None,
            sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.ctx = ctx
        self.router = router
        self.services = services
        self.backoff_seconds = (
            ctx.settings.event_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._sleep = sleep

        self.queue_id: str | None = None
        self.last_event_id: int = -1
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_tasks(self) -> set[asyncio.Task[None]]:
        return self._tasks

    async def register_queue(self) -> None:
        reg = await self.ctx.client.register_queue(EVENT_TYPES)
        self.queue_id = reg.queue_id
        self.last_event_id = reg.last_event_id
        logger.info("Registered event queue %s (last_event_id=%s)", reg.queue_id, reg.last_event_id)

    def _spawn(self, coro: Coroutine[Any, Any, None], what: str) -> None:
        async def guarded() -> None:
            try:
                await coro
            except Exception:
                logger.exception("Unhandled error in %s", what)

        task = asyncio.create_task(guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_reaction(self, event: ReactionEvent) -> None:
        for service in self.services:
            handler = getattr(service, "on_reaction", None)
            if handler is None:
                continue
            name = getattr(service, "name", type(service).__name__)
            self._spawn(handler(event), f"reaction handler {name}")

    async def poll_once(self) -> None:
        if self.queue_id is None:
            await self.register_queue()
        assert self.queue_id is not None

        events = await self.ctx.client.get_events(self.queue_id, self.last_event_id)
        for event in events:
            self.last_event_id = max(self.last_event_id, event.id)

            if isinstance(event, MessageEvent):
                self._spawn(self.router.handle_message(event), f"message {event.message.id}")
            elif isinstance(event, ReactionEvent):
                self._handle_reaction(event)

    async def run(self) -> None:
        """Poll forever. Only cancellation stops the loop."""
        while True:
            try:
                await self.poll_once()
            except BadEventQueueError:
                # poll_once registers a fresh queue (and cursor) on the next pass.
                logger.warning("Event queue %s expired, re-registering", self.queue_id)
                self.queue_id = None
            except Exception:
                logger.exception("Event poll failed, retrying in %.1fs", self.backoff_seconds)
                await self._sleep(self.backoff_seconds)
