# src/dealer_crm/todos/todo_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import ValidationError
from ..pipeline.milestones import parse_date
from ..realtime.change_feed import ChangeEvent, ChangeKind, LocalChangeFeed
from .todo_models import Priority, Todo

logger = logging.getLogger(__name__)

TABLE = "todos"

_UPDATABLE = {
    "text",
    "completed",
    "priority",
    "due_date",
    "customer_id",
    "customer_name",
    "milestone_id",
    "checklist_item_id",
}


class TodoStore:
    """
    SQLite todo store.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection

    Every successful write is published to the attached change feed.
    """

    def __init__(self, db_path: str | Path = "crm.sqlite3", *, feed: LocalChangeFeed | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._feed = feed
        self._ensure_schema()
        try:
            total = self.count_todos()
        except Exception:
            total = -1
        logger.info("TodoStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS todos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL DEFAULT '',
                    customer_id INTEGER,
                    text TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_date TEXT,
                    customer_name TEXT,
                    milestone_id TEXT,
                    checklist_item_id TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(todos)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE todos ADD COLUMN {name} {decl}")
                logger.info("TodoStore migration: added column %s", name)

            add_col("customer_name", "TEXT")
            add_col("milestone_id", "TEXT")
            add_col("checklist_item_id", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_todos_customer ON todos(customer_id, milestone_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_todos_due ON todos(completed, due_date)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_todo(row: sqlite3.Row) -> Todo:
        return Todo(
            id=int(row["id"]),
            user_id=str(row["user_id"] or ""),
            text=str(row["text"] or ""),
            completed=bool(row["completed"]),
            priority=Priority.from_db(row["priority"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            due_date=parse_date(row["due_date"]),
            customer_id=int(row["customer_id"]) if row["customer_id"] is not None else None,
            customer_name=row["customer_name"],
            milestone_id=row["milestone_id"],
            checklist_item_id=row["checklist_item_id"],
        )

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column == "text":
            text = str(value or "").strip()
            if not text:
                raise ValidationError("Task text is required")
            return text
        if column == "completed":
            return 1 if value else 0
        if column == "priority":
            try:
                return Priority(value).value
            except ValueError:
                raise ValidationError(f"Unknown priority: {value!r}") from None
        if column == "due_date":
            d = parse_date(value)
            return d.isoformat() if d else None
        if column == "customer_id":
            return int(value) if value is not None else None
        return value

    def _publish(self, kind: ChangeKind, new: Todo | None = None, old: dict[str, Any] | None = None) -> None:
        if self._feed is None:
            return
        self._feed.publish(
            ChangeEvent(kind=kind, table=TABLE, new=new.to_record() if new else None, old=old)
        )

    # ---- public API ----

    def count_todos(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM todos").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_todo(
        self,
        *,
        user_id: str,
        text: str,
        priority: Priority | str | None = None,
        due_date: date | None = None,
        customer_id: int | None = None,
        customer_name: str | None = None,
        milestone_id: str | None = None,
        checklist_item_id: str | None = None,
    ) -> Todo:
        text_v = self._encode("text", text)
        priority_v = self._encode("priority", priority or Priority.MEDIUM)
        now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO todos(
                    user_id, customer_id, text, completed, priority, due_date,
                    customer_name, milestone_id, checklist_item_id,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    self._encode("customer_id", customer_id),
                    text_v,
                    priority_v,
                    self._encode("due_date", due_date),
                    customer_name,
                    milestone_id,
                    checklist_item_id,
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for todos insert")
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (int(rowid),)).fetchone()
        finally:
            conn.close()

        todo = self._row_to_todo(row)
        logger.debug(
            "Todo added id=%s customer_id=%s milestone=%s priority=%s",
            todo.id,
            customer_id,
            milestone_id,
            priority_v,
        )
        self._publish(ChangeKind.INSERT, new=todo)
        return todo

    def get_todo(self, todo_id: int) -> Todo | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (int(todo_id),)).fetchone()
            return self._row_to_todo(row) if row else None
        finally:
            conn.close()

    def list_todos(self) -> list[Todo]:
        """All todos, newest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM todos ORDER BY created_at DESC, id DESC").fetchall()
            return [self._row_to_todo(r) for r in rows]
        finally:
            conn.close()

    def list_open_todos(self, *, customer_id: int | None, milestone_id: str | None) -> list[Todo]:
        """Not-completed todos linked to (customer_id, milestone_id); NULL matches NULL."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM todos
                WHERE completed = 0
                  AND customer_id IS ?
                  AND milestone_id IS ?
                ORDER BY created_at ASC, id ASC
                """,
                (customer_id, milestone_id),
            ).fetchall()
            return [self._row_to_todo(r) for r in rows]
        finally:
            conn.close()

    def update_todo(self, todo_id: int, updates: dict[str, Any]) -> Todo | None:
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Unknown todo field(s): {', '.join(sorted(unknown))}")

        fields: list[str] = []
        params: list[Any] = []
        for column, value in updates.items():
            fields.append(f"{column} = ?")
            params.append(self._encode(column, value))

        if not fields:
            return self.get_todo(todo_id)

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(todo_id))

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE todos SET {', '.join(fields)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (int(todo_id),)).fetchone()
        finally:
            conn.close()

        todo = self._row_to_todo(row)
        self._publish(ChangeKind.UPDATE, new=todo)
        return todo

    def delete_todo(self, todo_id: int) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM todos WHERE id = ?", (int(todo_id),))
            conn.commit()
            deleted = cur.rowcount == 1
        finally:
            conn.close()

        if deleted:
            self._publish(ChangeKind.DELETE, old={"id": int(todo_id)})
        return deleted
