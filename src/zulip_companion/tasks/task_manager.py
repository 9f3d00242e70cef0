# src/zulip_companion/tasks/task_manager.py

"""
Task lifecycle.

A stream message is promoted into a task once; the task gets a card message
in a tasks channel. Assignment changes and completion toggles update the
store first, then re-render the card.

State machine:
  (absent) --promote--> open --done emoji added--> done --done emoji removed--> open
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Sequence
from dataclasses import replace

from ..core.context import ServiceContext
from ..core.models import Mention, Message, ReactionEvent
from ..core.text import extract_quoted_message_id, html_to_text, parse_mentions, truncate
from .channel_policy import TasksChannelPolicy
from .rendering import render_task_card
from .task_models import Task, TaskLookup
from .task_store import DuplicateTaskError, TaskStore

logger = logging.getLogger(__name__)

DUPLICATE_TASK = "A task already exists for that message."
NOTHING_TO_PROMOTE = "There's no message above to promote into a task."
QUOTE_REQUIRED = "Please quote-reply to the specific task message you want to update."
NOT_A_TASK = "The quoted message is not a tracked task."
OWN_TOPIC_MAX_CHARS = 50


class TaskError(RuntimeError):
    """A task request that cannot be served. The message is the user-facing reply."""


class TaskManager:
    def __init__(self, ctx: ServiceContext, store: TaskStore, policy: TasksChannelPolicy) -> None:
        self.ctx = ctx
        self.store = store
        self.policy = policy

    # ---- helpers ----

    def render(self, task: Task) -> str:
        return render_task_card(
            task,
            self.store.get_assignees(task.id),
            realm=self.ctx.settings.zulip_realm,
            done_emoji=self.ctx.settings.done_emoji,
        )

    async def sync_card(self, task: Task) -> None:
        """Re-render the card from stored state. Edit failures are logged only."""
        if not task.task_msg_id:
            return
        try:
            await self.ctx.client.edit_message(task.task_msg_id, self.render(task))
        except Exception:
            logger.exception("Failed to sync task card msg_id=%s", task.task_msg_id)

    async def user_name(self, user_id: int) -> str:
        user = await self.ctx.client.get_user(user_id)
        return user.full_name if user is not None and user.full_name else "Unknown"

    def _card_topic(self, source: Message, content: str, *, own_topic: bool) -> str:
        if own_topic:
            return truncate(content, OWN_TOPIC_MAX_CHARS)
        if self.policy.is_tasks_channel(source.channel):
            return source.topic
        return f"{source.channel} / {source.topic}"

    # ---- creation ----

    async def promote(
            self,
            source: Message,
            *,
            creator_name: str,
            creator_user_id: int | None,
            assignees: Sequence[Mention] = (),
            own_topic: bool = False,
            mark_source: bool = True,
    ) -> Task:
        if self.store.get_by_source(source.id) is not None:
            raise TaskError(DUPLICATE_TASK)

        client = self.ctx.client
        content = html_to_text(source.content)
        dest_channel = await self.policy.resolve(source.channel)

        try:
            task = self.store.create_task(
                content=content,
                creator_name=creator_name,
                creator_user_id=creator_user_id,
                source_channel=source.channel,
                source_topic=source.topic,
                source_msg_id=source.id,
                own_topic=own_topic,
            )
        except DuplicateTaskError as e:
            raise TaskError(DUPLICATE_TASK) from e

        self.store.add_assignees(task.id, assignees)

        topic = self._card_topic(source, content, own_topic=own_topic)
        try:
            card_msg_id = await client.send_message(
                dest_channel,
                topic,
                self.render(replace(task, task_channel=dest_channel, task_topic=topic)),
            )
        except Exception:
            # No card means no task; drop the row so the message can be promoted again.
            logger.exception("Failed to post task card for msg %s, rolling back task %s", source.id, task.id)
            self.store.delete_task(task.id)
            raise
        self.store.set_task_message(task.id, channel=dest_channel, topic=topic, msg_id=card_msg_id)

        if mark_source:
            with contextlib.suppress(Exception):
                await client.add_reaction(source.id, self.ctx.settings.task_emoji)

        parts = [f"Task created by {creator_name}"]
        if assignees:
            parts.append("assigned to " + ", ".join(m.silent() for m in assignees))
        await client.send_message(
            source.channel,
            source.topic,
            f"{', '.join(parts)} in #**{dest_channel}>{topic}**",
        )

        logger.info(
            "Task %s created from msg %s by %s -> #%s > %s",
            task.id,
            source.id,
            creator_name,
            dest_channel,
            topic,
        )
        return self.store.get_task(task.id) or task

    async def promote_preceding(
            self,
            command: Message,
            assignees: Sequence[Mention],
            *,
            own_topic: bool = False,
    ) -> Task:
        """Promote the message right above `command` in its topic."""
        history = await self.ctx.client.fetch_messages(
            command.channel,
            command.topic,
            anchor=command.id,
            num_before=1,
            num_after=0,
        )
        preceding = [m for m in history if m.id != command.id]
        if not preceding:
            raise TaskError(NOTHING_TO_PROMOTE)

        return await self.promote(
            preceding[-1],
            creator_name=command.sender_full_name,
            creator_user_id=command.sender_id,
            assignees=assignees,
            own_topic=own_topic,
        )

    async def promote_from_reaction(self, event: ReactionEvent) -> Task | None:
        """Promote on the task emoji. The reactor becomes creator and sole assignee."""
        source = await self.ctx.client.get_message(event.message_id)
        if source is None or not source.is_stream:
            return None
        if self.store.get_by_source(source.id) is not None:
            return None

        name = await self.user_name(event.user_id)
        try:
            return await self.promote(
                source,
                creator_name=name,
                creator_user_id=event.user_id,
                assignees=[Mention(user_id=event.user_id, user_name=name)],
                mark_source=False,
            )
        except TaskError:
            return None

    # ---- updates ----

    async def change_assignees(self, command: Message, *, removing: bool) -> str:
        """Apply `assign`/`unassign` from a quote-reply. Returns the confirmation text."""
        verb = "unassign" if removing else "assign"
        mentions = parse_mentions(command.content, exclude_user_id=self.ctx.bot_user_id)
        if not mentions:
            raise TaskError(f"Usage: quote-reply to a task and type `@bot {verb} @user`")

        quoted_id = extract_quoted_message_id(command.content)
        if quoted_id is None:
            raise TaskError(QUOTE_REQUIRED)

        task = self.store.get_by_task_message(quoted_id)
        if task is None:
            raise TaskError(NOT_A_TASK)

        if removing:
            self.store.remove_assignees(task.id, [m.user_id for m in mentions])
        else:
            self.store.add_assignees(task.id, mentions)
        await self.sync_card(task)

        names = ", ".join(m.user_name for m in mentions)
        logger.info("Task %s %sed: %s", task.id, verb, names)
        if removing:
            return f"{names} unassigned from this task."
        return f"{names} assigned to this task."

    async def set_completion(self, card_msg_id: int, user_id: int, *, done: bool) -> Task | None:
        task = self.store.get_by_task_message(card_msg_id)
        if task is None:
            return None

        if done:
            name = await self.user_name(user_id)
            self.store.complete(task.id, name)
            logger.info("Task %s completed by %s", task.id, name)
        else:
            self.store.reopen(task.id)
            logger.info("Task %s reopened", task.id)

        updated = self.store.get_task(task.id) or task
        await self.sync_card(updated)
        return updated

    def tasks_for(self, user_name: str) -> list[TaskLookup]:
        return self.store.tasks_for(user_name)
