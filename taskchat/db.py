"""SQLite persistence layer."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from taskchat.models import Task

SCHEMA_VERSION = 1

_TASK_COLUMNS = "id, user_id, title, completed, due_at, created_at, updated_at"


class Database:
    """Small SQLite wrapper with explicit schema management.

    Every task query filters on ``user_id``; no method reads or writes
    another user's rows.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                completed INTEGER NOT NULL DEFAULT 0,
                due_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_user_id ON tasks(user_id);
            CREATE INDEX IF NOT EXISTS idx_tasks_due_at ON tasks(due_at) WHERE due_at IS NOT NULL;
            CREATE INDEX IF NOT EXISTS idx_chat_messages_conversation
                ON chat_messages(user_id, conversation_id);
            """
        )

    def add_task(self, user_id: str, title: str, due_at: str | None = None) -> Task:
        now = _utc_now_iso()
        task = Task(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            completed=False,
            due_at=due_at,
            created_at=now,
            updated_at=now,
        )
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO tasks({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (task.id, user_id, title, 0, due_at, now, now),
            )
        return task

    def list_tasks(self, user_id: str, completed: bool | None = None) -> list[Task]:
        """Return the user's tasks, newest created first."""

        query = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE user_id = ?"
        params: list[object] = [user_id]
        if completed is not None:
            query += " AND completed = ?"
            params.append(int(completed))
        query += " ORDER BY created_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_task(row) for row in rows]

    def get_task(self, user_id: str, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ? AND user_id = ?",
                (task_id, user_id),
            ).fetchone()
        return _row_to_task(row) if row else None

    def find_task(self, user_id: str, fragment: str) -> Task | None:
        """Case-insensitive substring lookup; the most recently created match wins."""

        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_TASK_COLUMNS}
                FROM tasks
                WHERE user_id = ? AND instr(lower(title), lower(?)) > 0
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (user_id, fragment),
            ).fetchone()
        return _row_to_task(row) if row else None

    def set_task_completed(self, user_id: str, task_id: str, completed: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET completed = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (int(completed), _utc_now_iso(), task_id, user_id),
            )

    def rename_task(self, user_id: str, task_id: str, title: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET title = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (title, _utc_now_iso(), task_id, user_id),
            )

    def delete_task(self, user_id: str, task_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM tasks WHERE id = ? AND user_id = ?", (task_id, user_id))

    def delete_completed_tasks(self, user_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE user_id = ? AND completed = 1", (user_id,))
            return cur.rowcount

    def add_chat_message(self, user_id: str, conversation_id: str, role: str, content: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chat_messages(user_id, conversation_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, conversation_id, role, content, _utc_now_iso()),
            )

    def get_chat_messages(self, user_id: str, conversation_id: str) -> list[dict[str, str]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, content
                FROM chat_messages
                WHERE user_id = ? AND conversation_id = ?
                ORDER BY created_at ASC, id ASC
                """,
                (user_id, conversation_id),
            ).fetchall()
        return [{"role": row["role"], "content": row["content"]} for row in rows]

    def clear_conversation(self, user_id: str, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM chat_messages WHERE user_id = ? AND conversation_id = ?",
                (user_id, conversation_id),
            )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        completed=bool(row["completed"]),
        due_at=row["due_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
