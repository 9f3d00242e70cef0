# src/zulip_companion/tasks/task_store.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path

from ..core.models import Mention
from ..storage.sqlite_base import SQLiteStore
from .task_models import Assignee, Task, TaskLookup, TaskStatus

logger = logging.getLogger(__name__)


class DuplicateTaskError(RuntimeError):
    """A task already exists for the given source message."""

    def __init__(self, source_msg_id: int) -> None:
        super().__init__(f"task already exists for source message {source_msg_id}")
        self.source_msg_id = source_msg_id


class TaskStore(SQLiteStore):
    """
    SQLite store for tasks and their assignees.

    Tasks are never deleted; at most one task exists per source message.
    """

    def __init__(self, db_path: str | Path = "companion.sqlite3") -> None:
        super().__init__(db_path)
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL,
                    creator_name TEXT NOT NULL,
                    creator_user_id INTEGER,
                    status TEXT NOT NULL DEFAULT 'open',
                    source_channel TEXT NOT NULL,
                    source_topic TEXT NOT NULL,
                    source_msg_id INTEGER NOT NULL UNIQUE,
                    task_channel TEXT,
                    task_topic TEXT,
                    task_msg_id INTEGER,
                    own_topic INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    completed_at REAL,
                    completed_by TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_assignees (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    user_name TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    assigned_at REAL NOT NULL,
                    UNIQUE(task_id, user_id)
                )
                """
            )

            # Migrations (safe): add missing columns.
            self._add_missing_columns(
                cur,
                "tasks",
                [
                    ("creator_user_id", "INTEGER"),
                    ("task_channel", "TEXT"),
                    ("task_topic", "TEXT"),
                    ("task_msg_id", "INTEGER"),
                    ("own_topic", "INTEGER NOT NULL DEFAULT 0"),
                    ("completed_at", "REAL"),
                    ("completed_by", "TEXT"),
                ],
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_task_msg ON tasks(task_msg_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(creator_name)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_assignees_name ON task_assignees(user_name)")

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            content=str(row["content"] or ""),
            creator_name=str(row["creator_name"] or ""),
            creator_user_id=row["creator_user_id"],
            status=TaskStatus.from_db(row["status"]),
            source_channel=str(row["source_channel"] or ""),
            source_topic=str(row["source_topic"] or ""),
            source_msg_id=int(row["source_msg_id"]),
            task_channel=row["task_channel"],
            task_topic=row["task_topic"],
            task_msg_id=row["task_msg_id"],
            own_topic=bool(row["own_topic"]),
            created_at=float(row["created_at"] or 0.0),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            completed_by=row["completed_by"],
        )

    @staticmethod
    def _row_to_assignee(row: sqlite3.Row) -> Assignee:
        return Assignee(
            task_id=int(row["task_id"]),
            user_name=str(row["user_name"]),
            user_id=int(row["user_id"]),
            assigned_at=float(row["assigned_at"] or 0.0),
        )

    def _get_one(self, sql: str, params: tuple[object, ...]) -> Task | None:
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return self._row_to_task(row) if row is not None else None

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._connect() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(n)

    def create_task(
            self,
            *,
            content: str,
            creator_name: str,
            creator_user_id: int | None,
            source_channel: str,
            source_topic: str,
            source_msg_id: int,
            own_topic: bool = False,
    ) -> Task:
        """Insert an open task. Raises DuplicateTaskError if the source message is taken."""
        now = time.time()
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO tasks(
                        content, creator_name, creator_user_id, status,
                        source_channel, source_topic, source_msg_id,
                        own_topic, created_at
                    )
                    VALUES (?, ?, ?, 'open', ?, ?, ?, ?, ?)
                    """,
                    (
                        content,
                        creator_name,
                        creator_user_id,
                        source_channel,
                        source_topic,
                        int(source_msg_id),
                        1 if own_topic else 0,
                        now,
                    ),
                )
                rowid = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateTaskError(source_msg_id) from e

        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        logger.debug("Task added id=%s source_msg_id=%s", rowid, source_msg_id)

        return Task(
            id=int(rowid),
            content=content,
            creator_name=creator_name,
            creator_user_id=creator_user_id,
            status=TaskStatus.OPEN,
            source_channel=source_channel,
            source_topic=source_topic,
            source_msg_id=int(source_msg_id),
            task_channel=None,
            task_topic=None,
            task_msg_id=None,
            own_topic=own_topic,
            created_at=now,
        )

    def get_task(self, task_id: int) -> Task | None:
        return self._get_one("SELECT * FROM tasks WHERE id = ?", (int(task_id),))

    def get_by_source(self, source_msg_id: int) -> Task | None:
        return self._get_one("SELECT * FROM tasks WHERE source_msg_id = ?", (int(source_msg_id),))

    def get_by_task_message(self, task_msg_id: int) -> Task | None:
        return self._get_one("SELECT * FROM tasks WHERE task_msg_id = ?", (int(task_msg_id),))

    def set_task_message(self, task_id: int, *, channel: str, topic: str, msg_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET task_channel = ?, task_topic = ?, task_msg_id = ? WHERE id = ?",
                (channel, topic, int(msg_id), int(task_id)),
            )

    def delete_task(self, task_id: int) -> None:
        """Assignees go with the task (ON DELETE CASCADE)."""
        with self._connect() as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))

    def complete(self, task_id: int, completed_by: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET status = 'done', completed_at = ?, completed_by = ? WHERE id = ?",
                (time.time(), completed_by, int(task_id)),
            )

    def reopen(self, task_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET status = 'open', completed_at = NULL, completed_by = NULL WHERE id = ?",
                (int(task_id),),
            )

    def add_assignees(self, task_id: int, users: Iterable[Mention]) -> None:
        """Batch add in one transaction; already-assigned users are skipped."""
        now = time.time()
        rows = [(int(task_id), u.user_name, int(u.user_id), now) for u in users]
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO task_assignees(task_id, user_name, user_id, assigned_at) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )

    def remove_assignees(self, task_id: int, user_ids: Iterable[int]) -> None:
        ids = [int(u) for u in user_ids]
        if not ids:
            return
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            conn.execute(
                f"DELETE FROM task_assignees WHERE task_id = ? AND user_id IN ({placeholders})",
                (int(task_id), *ids),
            )

    def get_assignees(self, task_id: int) -> list[Assignee]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_assignees WHERE task_id = ? ORDER BY assigned_at, id",
                (int(task_id),),
            ).fetchall()
        return [self._row_to_assignee(r) for r in rows]

    def tasks_for(self, user_name: str) -> list[TaskLookup]:
        """
        Tasks involving a user (matched case-insensitively by display name).

        Assigned tasks come first, then tasks the user created but is not
        assigned to; each group newest first.
        """
        name = (user_name or "").strip().lower()
        if not name:
            return []

        with self._connect() as conn:
            assigned = conn.execute(
                """
                SELECT DISTINCT t.* FROM tasks t
                JOIN task_assignees a ON a.task_id = t.id
                WHERE LOWER(a.user_name) = ?
                ORDER BY t.created_at DESC, t.id DESC
                """,
                (name,),
            ).fetchall()
            created = conn.execute(
                "SELECT * FROM tasks WHERE LOWER(creator_name) = ? ORDER BY created_at DESC, id DESC",
                (name,),
            ).fetchall()

        assigned_ids = {int(r["id"]) for r in assigned}
        out: list[TaskLookup] = []
        for role, rows in (("assigned", assigned), ("created", created)):
            for row in rows:
                if role == "created" and int(row["id"]) in assigned_ids:
                    continue
                task = self._row_to_task(row)
                out.append(TaskLookup(task=task, assignees=tuple(self.get_assignees(task.id)), role=role))
        return out
