# src/zulip_companion/services/tasks.py

from __future__ import annotations

import re

from ..core.context import ServiceContext
from ..core.models import Message, ReactionEvent
from ..core.text import command_text, html_to_text, parse_mentions
from ..tasks.rendering import format_task_list
from ..tasks.task_manager import TaskError, TaskManager
from .base import BaseService, ServiceCommand

MY_TASKS_RE = re.compile(r"^my\s+tasks?\s*$", re.IGNORECASE)
USER_TASKS_RE = re.compile(r"^tasks\s*$", re.IGNORECASE)
ASSIGN_RE = re.compile(r"^(un)?assign\s*$", re.IGNORECASE)
TASK_RE = re.compile(r"^task\b", re.IGNORECASE)
OWN_TOPIC_RE = re.compile(r"--own-topic", re.IGNORECASE)


class TasksService(BaseService):
    name = "tasks"
    description = "Promote messages into tasks via @bot task or :clipboard: reaction (SQLite-backed)"
    commands = (
        ServiceCommand("task", "Promote the message above into a task"),
        ServiceCommand("task --own-topic", "Promote into a task with its own topic"),
        ServiceCommand("assign @user", "Assign a user to a task (quote-reply to task)"),
        ServiceCommand("unassign @user", "Remove a user from a task (quote-reply to task)"),
        ServiceCommand("my tasks", "List tasks assigned to or created by you"),
        ServiceCommand("tasks @user", "List tasks for a specific user"),
    )

    def __init__(self, ctx: ServiceContext, manager: TaskManager) -> None:
        super().__init__(ctx)
        self.manager = manager

    async def _reply(self, msg: Message, content: str) -> None:
        await self.ctx.client.send_message(msg.channel, msg.topic, content)

    async def _list_for(self, msg: Message, user_name: str) -> None:
        lookups = self.manager.tasks_for(user_name)
        await self._reply(msg, format_task_list(user_name, lookups, realm=self.ctx.settings.zulip_realm))

    async def on_message(self, message: Message) -> bool:
        stripped = command_text(message.content)

        try:
            if MY_TASKS_RE.match(stripped):
                await self._list_for(message, message.sender_full_name)
                return True

            if USER_TASKS_RE.match(stripped):
                mentions = parse_mentions(message.content, exclude_user_id=self.ctx.bot_user_id)
                if mentions:
                    await self._list_for(message, mentions[0].user_name)
                    return True

            m = ASSIGN_RE.match(stripped)
            if m:
                confirmation = await self.manager.change_assignees(message, removing=bool(m.group(1)))
                await self._reply(message, confirmation)
                return True

            if not TASK_RE.match(stripped):
                return False

            own_topic = bool(OWN_TOPIC_RE.search(html_to_text(message.content)))
            mentions = parse_mentions(message.content, exclude_user_id=self.ctx.bot_user_id)
            await self.manager.promote_preceding(message, mentions, own_topic=own_topic)
            return True

        except TaskError as e:
            await self._reply(message, str(e))
            return True

    async def on_reaction(self, event: ReactionEvent) -> None:
        if self.ctx.is_bot(user_id=event.user_id):
            return
        settings = self.ctx.settings

        if event.emoji_name == settings.done_emoji:
            await self.manager.set_completion(event.message_id, event.user_id, done=event.added)
            return

        if event.added and event.emoji_name == settings.task_emoji:
            await self.manager.promote_from_reaction(event)
