# src/zulip_companion/tasks/rendering.py

from __future__ import annotations

from collections.abc import Sequence

from ..core.models import Mention
from ..core.text import narrow_url, quote_block, truncate
from .task_models import Assignee, Task, TaskLookup

DONE_MARK = "✅"
OPEN_MARK = "📋"


def status_mark(task: Task) -> str:
    return DONE_MARK if task.is_done else OPEN_MARK


def render_task_card(
        task: Task,
        assignees: Sequence[Assignee],
        *,
        realm: str,
        done_emoji: str = "check",
) -> str:
    """Markdown of the task card posted in the tasks channel."""
    link = narrow_url(realm, task.source_channel, task.source_topic, task.source_msg_id)
    if task.is_done:
        status = f"Done by {task.completed_by}" if task.completed_by else "Done"
    else:
        status = f"Open — react with :{done_emoji}: when done"

    lines = [
        f"{status_mark(task)} **Task** — [source message]({link})",
        "",
        quote_block(task.content),
        "",
    ]
    if assignees:
        mentions = ", ".join(Mention(a.user_id, a.user_name).silent() for a in assignees)
        lines.append(f"**Assigned to**: {mentions}")
    lines.append(f"**Created by**: {task.creator_name}")
    lines.append(f"**Status**: {status}")
    return "\n".join(lines)


def format_task_line(task: Task, *, realm: str) -> str:
    preview = truncate(task.content, 80)
    if task.task_channel and task.task_topic and task.task_msg_id:
        link = narrow_url(realm, task.task_channel, task.task_topic, task.task_msg_id)
        return f"{status_mark(task)} [{preview}]({link})\n   #**{task.task_channel}>{task.task_topic}**\n"
    return f"{status_mark(task)} {preview}\n"


def format_task_list(user_name: str, lookups: Sequence[TaskLookup], *, realm: str) -> str:
    if not lookups:
        return f"No tasks found for {user_name}."

    assigned = [r for r in lookups if r.role == "assigned"]
    created = [r for r in lookups if r.role == "created"]

    lines: list[str] = []
    if assigned:
        lines.append(f"**Tasks assigned to {user_name}** ({len(assigned)}):\n")
        lines.extend(format_task_line(r.task, realm=realm) for r in assigned)
    if created:
        lines.append(f"**Tasks created by {user_name}** ({len(created)}):\n")
        lines.extend(format_task_line(r.task, realm=realm) for r in created)
    return "\n".join(lines)
