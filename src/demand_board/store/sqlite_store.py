# src/demand_board/store/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from ..core.models import ChangeEvent, ChangeKind
from ..core.ports import Row
from ..errors import RemoteStoreError
from .feed import LocalChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TASK_COLUMNS = (
    "title",
    "category",
    "priority",
    "project",
    "assignees",
    "status",
    "progress",
    "justification",
)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class SQLiteRemoteStore:
    """
    SQLite implementation of the RemoteStore port.

    Plays the hosted backend for local runs and tests: it assigns ids and
    creation timestamps, and publishes a ChangeEvent to the attached feed
    after every committed write (database change capture, in-process).

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing task columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection inside a worker thread
    """

    def __init__(self, db_path: str | Path = "board.sqlite3", *, feed: LocalChangeFeed | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.feed = feed if feed is not None else LocalChangeFeed()
        self._ensure_schema()
        logger.info("SQLiteRemoteStore ready db=%s", self._db_path)

    async def close(self) -> None:
        """No persistent connections to close."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'Dev',
                    priority TEXT NOT NULL DEFAULT 'MEDIA',
                    project TEXT NOT NULL DEFAULT '',
                    assignees TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    progress INTEGER NOT NULL DEFAULT 0,
                    justification TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS comments (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    author TEXT NOT NULL,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    user_email TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    email TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

            # Migrations (safe): older files may predate progress/justification.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SQLiteRemoteStore migration: added column %s", name)

            add_col("progress", "INTEGER NOT NULL DEFAULT 0")
            add_col("justification", "TEXT NOT NULL DEFAULT ''")
            add_col("assignees", "TEXT NOT NULL DEFAULT '[]'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_comments_task ON comments(task_id)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_email, created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _task_row(row: sqlite3.Row) -> Row:
        out = dict(row)
        try:
            assignees = json.loads(out.get("assignees") or "[]")
        except ValueError:
            assignees = []
        out["assignees"] = assignees if isinstance(assignees, list) else []
        return out

    @staticmethod
    def _notification_row(row: sqlite3.Row) -> Row:
        out = dict(row)
        out["read"] = bool(out.get("read"))
        return out

    async def _run(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            logger.warning("SQLite %s failed: %s", operation, e)
            raise RemoteStoreError(str(e), operation=operation) from e

    def _publish(self, table: str, kind: ChangeKind, new: Row, old: Row | None = None) -> None:
        self.feed.publish(ChangeEvent(table=table, kind=kind, new=new, old=old))

    # ---- tasks ----

    def _fetch_tasks(self) -> list[Row]:
        conn = self._get_conn()
        try:
            tasks = [self._task_row(r) for r in conn.execute("SELECT * FROM tasks ORDER BY created_at DESC")]
            by_id: dict[str, list[Row]] = {t["id"]: [] for t in tasks}
            for c in conn.execute("SELECT * FROM comments"):
                bucket = by_id.get(c["task_id"])
                if bucket is not None:
                    bucket.append(dict(c))
            for t in tasks:
                t["comments"] = by_id[t["id"]]
            return tasks
        finally:
            conn.close()

    async def fetch_tasks(self) -> list[Row]:
        return await self._run("fetch_tasks", self._fetch_tasks)

    def _get_task(self, conn: sqlite3.Connection, task_id: str) -> Row | None:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._task_row(row) if row else None

    def _insert_task(self, row: Row) -> Row:
        title = str(row.get("title") or "").strip()
        if not title:
            raise sqlite3.IntegrityError("title is required")
        task_id = _new_id()
        created_at = _now_iso()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, category, priority, project, assignees,
                    status, progress, justification, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    title,
                    str(row.get("category") or "Dev"),
                    str(row.get("priority") or "MEDIA"),
                    str(row.get("project") or ""),
                    json.dumps(list(row.get("assignees") or []), ensure_ascii=False),
                    str(row.get("status") or "PENDING"),
                    int(row.get("progress") or 0),
                    str(row.get("justification") or ""),
                    created_at,
                ),
            )
            conn.commit()
            stored = self._get_task(conn, task_id)
            if stored is None:
                raise sqlite3.DatabaseError("inserted task vanished")
            logger.debug("Task inserted id=%s", task_id)
            return stored
        finally:
            conn.close()

    async def insert_task(self, row: Row) -> Row:
        stored = await self._run("insert_task", self._insert_task, row)
        self._publish("tasks", ChangeKind.INSERT, dict(stored))
        return stored

    def _update_task(self, task_id: str, fields: Row) -> Row | None:
        sets: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            if name not in _TASK_COLUMNS:
                raise sqlite3.OperationalError(f"unknown task column: {name}")
            if name == "assignees":
                value = json.dumps(list(value or []), ensure_ascii=False)
            sets.append(f"{name} = ?")
            params.append(value)
        if not sets:
            return None
        params.append(task_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount == 0:
                return None
            return self._get_task(conn, task_id)
        finally:
            conn.close()

    async def update_task(self, task_id: str, fields: Row) -> None:
        stored = await self._run("update_task", self._update_task, task_id, fields)
        if stored is not None:
            self._publish("tasks", ChangeKind.UPDATE, dict(stored))

    def _delete_task(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    async def delete_task(self, task_id: str) -> None:
        deleted = await self._run("delete_task", self._delete_task, task_id)
        if deleted:
            self._publish("tasks", ChangeKind.DELETE, {}, old={"id": task_id})

    # ---- comments ----

    def _insert_comment(self, row: Row) -> Row:
        comment_id = _new_id()
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO comments(id, task_id, author, text, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    comment_id,
                    str(row.get("task_id") or ""),
                    str(row.get("author") or ""),
                    str(row.get("text") or ""),
                    _now_iso(),
                ),
            )
            conn.commit()
            stored = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
            return dict(stored)
        finally:
            conn.close()

    async def insert_comment(self, row: Row) -> Row:
        stored = await self._run("insert_comment", self._insert_comment, row)
        self._publish("comments", ChangeKind.INSERT, dict(stored))
        return stored

    # ---- notifications ----

    def _fetch_notifications(self, user_email: str, limit: int) -> list[Row]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT * FROM notifications
                WHERE user_email = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_email.lower(), int(limit)),
            )
            return [self._notification_row(r) for r in cur.fetchall()]
        finally:
            conn.close()

    async def fetch_notifications(self, user_email: str, limit: int = 20) -> list[Row]:
        return await self._run("fetch_notifications", self._fetch_notifications, user_email, limit)

    def _insert_notification(self, row: Row) -> Row:
        notification_id = _new_id()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO notifications(id, user_email, title, message, read, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    notification_id,
                    str(row.get("user_email") or "").lower(),
                    str(row.get("title") or ""),
                    str(row.get("message") or ""),
                    1 if row.get("read") else 0,
                    _now_iso(),
                ),
            )
            conn.commit()
            stored = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
            return self._notification_row(stored)
        finally:
            conn.close()

    async def insert_notification(self, row: Row) -> Row:
        stored = await self._run("insert_notification", self._insert_notification, row)
        self._publish("notifications", ChangeKind.INSERT, dict(stored))
        return stored

    def _update_notification(self, notification_id: str, fields: Row) -> None:
        if set(fields) - {"read"}:
            raise sqlite3.OperationalError("only 'read' may be updated on notifications")
        if "read" not in fields:
            return
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE notifications SET read = ? WHERE id = ?",
                (1 if fields["read"] else 0, notification_id),
            )
            conn.commit()
        finally:
            conn.close()

    async def update_notification(self, notification_id: str, fields: Row) -> None:
        await self._run("update_notification", self._update_notification, notification_id, fields)

    def _delete_notifications(self, user_email: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM notifications WHERE user_email = ?", (user_email.lower(),))
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    async def delete_notifications(self, user_email: str) -> None:
        n = await self._run("delete_notifications", self._delete_notifications, user_email)
        logger.debug("Deleted %s notifications for %s", n, user_email)

    # ---- profiles ----

    def _fetch_profile(self, email: str) -> Row | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM profiles WHERE email = ?", (email.lower(),)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    async def fetch_profile(self, email: str) -> Row | None:
        return await self._run("fetch_profile", self._fetch_profile, email)

    def _insert_profile(self, row: Row) -> Row:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO profiles(email, name, role, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    str(row["email"]).lower(),
                    str(row.get("name") or ""),
                    str(row.get("role") or "EMPLOYEE"),
                    str(row["password_hash"]),
                    _now_iso(),
                ),
            )
            conn.commit()
            stored = conn.execute("SELECT * FROM profiles WHERE email = ?", (str(row["email"]).lower(),)).fetchone()
            return dict(stored)
        finally:
            conn.close()

    async def insert_profile(self, row: Row) -> Row:
        return await self._run("insert_profile", self._insert_profile, row)
