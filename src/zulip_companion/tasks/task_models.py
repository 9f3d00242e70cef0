# src/zulip_companion/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TaskStatus(StrEnum):
    OPEN = "open"
    DONE = "done"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.OPEN
        try:
            return cls(raw)
        except ValueError:
            return cls.OPEN


@dataclass(slots=True)
class Task:
    id: int
    content: str
    creator_name: str
    creator_user_id: int | None
    status: TaskStatus

    source_channel: str
    source_topic: str
    source_msg_id: int

    task_channel: str | None
    task_topic: str | None
    task_msg_id: int | None
    own_topic: bool

    created_at: float
    completed_at: float | None = None
    completed_by: str | None = None

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE


@dataclass(frozen=True, slots=True)
class Assignee:
    task_id: int
    user_name: str
    user_id: int
    assigned_at: float


@dataclass(frozen=True, slots=True)
class TaskLookup:
    """A task together with its assignees (as returned by user lookups)."""

    task: Task
    assignees: tuple[Assignee, ...]
    role: str  # "assigned" | "created"
