# src/zulip_companion/dashboards/dashboard_store.py

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

from ..storage.sqlite_base import SQLiteStore

logger = logging.getLogger(__name__)


class DuplicateDashboardError(RuntimeError):
    """A dashboard with the same name already runs in that channel/topic."""

    def __init__(self, name: str, channel: str, topic: str) -> None:
        super().__init__(f"dashboard {name!r} already exists in {channel} > {topic}")
        self.name = name
        self.channel = channel
        self.topic = topic


@dataclass(frozen=True, slots=True)
class DashboardInstance:
    id: int
    name: str
    channel: str
    topic: str
    msg_id: int
    interval_seconds: float
    params: str
    bootstrapped: bool
    created_at: float


class DashboardStore(SQLiteStore):
    """
    Persisted dashboard instances and the feed-item markers they own.

    Deleting an instance removes its markers (ON DELETE CASCADE).
    """

    def __init__(self, db_path: str | Path = "companion.sqlite3") -> None:
        super().__init__(db_path)
        logger.info("DashboardStore ready db=%s active=%s", self._db_path, len(self.list_all()))

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS dashboards (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    topic TEXT NOT NULL,
                    msg_id INTEGER NOT NULL,
                    interval_seconds REAL NOT NULL DEFAULT 60,
                    params TEXT NOT NULL DEFAULT '',
                    bootstrapped INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    UNIQUE(name, channel, topic)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS feed_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    dashboard_id INTEGER NOT NULL REFERENCES dashboards(id) ON DELETE CASCADE,
                    item_guid TEXT NOT NULL,
                    seen_at REAL NOT NULL,
                    UNIQUE(dashboard_id, item_guid)
                )
                """
            )

            self._add_missing_columns(
                cur,
                "dashboards",
                [
                    ("interval_seconds", "REAL NOT NULL DEFAULT 60"),
                    ("params", "TEXT NOT NULL DEFAULT ''"),
                    ("bootstrapped", "INTEGER NOT NULL DEFAULT 0"),
                ],
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_dashboards_msg ON dashboards(msg_id)")

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> DashboardInstance:
        return DashboardInstance(
            id=int(row["id"]),
            name=str(row["name"]),
            channel=str(row["channel"]),
            topic=str(row["topic"]),
            msg_id=int(row["msg_id"]),
            interval_seconds=float(row["interval_seconds"]),
            params=str(row["params"] or ""),
            bootstrapped=bool(row["bootstrapped"]),
            created_at=float(row["created_at"] or 0.0),
        )

    def _select(self, where: str, params: tuple[object, ...]) -> list[DashboardInstance]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM dashboards {where} ORDER BY created_at, id", params
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    # ---- public API ----

    def create(
            self,
            *,
            name: str,
            channel: str,
            topic: str,
            msg_id: int,
            interval_seconds: float,
            params: str = "",
    ) -> DashboardInstance:
        now = time.time()
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO dashboards(name, channel, topic, msg_id, interval_seconds, params, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (name, channel, topic, int(msg_id), float(interval_seconds), params, now),
                )
                rowid = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateDashboardError(name, channel, topic) from e

        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for dashboards insert")
        return DashboardInstance(
            id=int(rowid),
            name=name,
            channel=channel,
            topic=topic,
            msg_id=int(msg_id),
            interval_seconds=float(interval_seconds),
            params=params,
            bootstrapped=False,
            created_at=now,
        )

    def get(self, dashboard_id: int) -> DashboardInstance | None:
        found = self._select("WHERE id = ?", (int(dashboard_id),))
        return found[0] if found else None

    def get_by_location(self, name: str, channel: str, topic: str) -> DashboardInstance | None:
        found = self._select("WHERE name = ? AND channel = ? AND topic = ?", (name, channel, topic))
        return found[0] if found else None

    def get_by_message(self, msg_id: int) -> DashboardInstance | None:
        found = self._select("WHERE msg_id = ?", (int(msg_id),))
        return found[0] if found else None

    def list_at(self, channel: str, topic: str) -> list[DashboardInstance]:
        return self._select("WHERE channel = ? AND topic = ?", (channel, topic))

    def list_all(self) -> list[DashboardInstance]:
        return self._select("", ())

    def set_bootstrapped(self, dashboard_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE dashboards SET bootstrapped = 1 WHERE id = ?", (int(dashboard_id),))

    def delete(self, dashboard_id: int) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM dashboards WHERE id = ?", (int(dashboard_id),))

    def mark_seen(self, dashboard_id: int, item_guid: str) -> bool:
        """Record a feed item. True only the first time this guid is seen for the dashboard."""
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO feed_items(dashboard_id, item_guid, seen_at) VALUES (?, ?, ?)",
                (int(dashboard_id), item_guid, time.time()),
            )
            return cur.rowcount > 0

    def count_seen(self, dashboard_id: int) -> int:
        with self._connect() as conn:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM feed_items WHERE dashboard_id = ?", (int(dashboard_id),)
            ).fetchone()
        return int(n)
