# src/dealer_crm/customers/customer_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.errors import ValidationError
from ..pipeline.milestones import (
    ChecklistState,
    Stage,
    default_stage_dates,
    stage_dates_to_record,
)
from ..realtime.change_feed import ChangeEvent, ChangeKind, LocalChangeFeed
from .customer_models import ArchiveStatus, Customer

logger = logging.getLogger(__name__)

TABLE = "customers"

_UPDATABLE = {
    "name",
    "phone",
    "email",
    "notes",
    "sales_consultant",
    "vsa_no",
    "deal_closed",
    "archive_status",
    "archived_at",
    "current_milestone",
    "checklist",
    "milestone_dates",
    "details",
}


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _json_loads(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Corrupt JSON column value ignored: %r", raw[:80])
        return None


class CustomerStore:
    """
    SQLite customer store.

    Checklist, milestone dates and descriptive details live in JSON columns,
    so an update of the whole workflow state is a single UPDATE statement.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "crm.sqlite3", *, feed: LocalChangeFeed | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._feed = feed
        self._ensure_schema()
        try:
            total = self.count_customers()
        except Exception:
            total = -1
        logger.info("CustomerStore ready db=%s total=%s", self._db_path, total)

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
                CREATE TABLE IF NOT EXISTS customers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL DEFAULT '',
                    name TEXT NOT NULL,
                    phone TEXT,
                    email TEXT,
                    notes TEXT,
                    sales_consultant TEXT,
                    vsa_no TEXT,
                    deal_closed INTEGER NOT NULL DEFAULT 0,
                    archive_status TEXT,
                    archived_at REAL,
                    current_milestone TEXT NOT NULL DEFAULT 'test_drive',
                    checklist TEXT NOT NULL DEFAULT '{}',
                    milestone_dates TEXT NOT NULL DEFAULT '{}',
                    details TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(customers)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE customers ADD COLUMN {name} {decl}")
                logger.info("CustomerStore migration: added column %s", name)

            add_col("archive_status", "TEXT")
            add_col("archived_at", "REAL")
            add_col("milestone_dates", "TEXT NOT NULL DEFAULT '{}'")
            add_col("details", "TEXT NOT NULL DEFAULT '{}'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_customers_archive ON customers(archive_status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_customers_milestone ON customers(current_milestone)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_customers_name ON customers(name)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_customer(row: sqlite3.Row) -> Customer:
        details = _json_loads(row["details"])
        return Customer.from_record(
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "name": row["name"],
                "phone": row["phone"],
                "email": row["email"],
                "notes": row["notes"],
                "sales_consultant": row["sales_consultant"],
                "vsa_no": row["vsa_no"],
                "deal_closed": bool(row["deal_closed"]),
                "archive_status": row["archive_status"],
                "archived_at": row["archived_at"],
                "current_milestone": row["current_milestone"],
                "checklist": _json_loads(row["checklist"]),
                "milestone_dates": _json_loads(row["milestone_dates"]),
                "details": details if isinstance(details, dict) else {},
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }
        )

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column == "name":
            name = str(value or "").strip()
            if not name:
                raise ValidationError("Customer name is required")
            return name
        if column == "deal_closed":
            return 1 if value else 0
        if column == "archive_status":
            if value is None or value == "":
                return None
            try:
                return ArchiveStatus(value).value
            except ValueError:
                raise ValidationError(f"Unknown archive status: {value!r}") from None
        if column == "archived_at":
            return float(value) if value is not None else None
        if column == "current_milestone":
            return Stage.parse(value).value
        if column == "checklist":
            state = value if isinstance(value, ChecklistState) else ChecklistState.from_record(value)
            return _json_dumps(state.to_record())
        if column == "milestone_dates":
            return _json_dumps(stage_dates_to_record(value if isinstance(value, dict) else {}))
        if column == "details":
            return _json_dumps(dict(value or {}))
        if isinstance(value, str):
            return value.strip() or None
        return value

    def _publish(self, kind: ChangeKind, new: Customer | None = None, old: dict[str, Any] | None = None) -> None:
        if self._feed is None:
            return
        self._feed.publish(
            ChangeEvent(kind=kind, table=TABLE, new=new.to_record() if new else None, old=old)
        )

    def _fetch_row(self, conn: sqlite3.Connection, customer_id: int) -> sqlite3.Row | None:
        return conn.execute("SELECT * FROM customers WHERE id = ?", (int(customer_id),)).fetchone()

    # ---- public API ----

    def count_customers(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM customers").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_customer(
        self,
        *,
        user_id: str,
        name: str,
        phone: str | None = None,
        email: str | None = None,
        notes: str | None = None,
        sales_consultant: str | None = None,
        vsa_no: str | None = None,
        deal_closed: bool = False,
        archive_status: ArchiveStatus | str | None = None,
        archived_at: float | None = None,
        current_milestone: Stage | str | None = None,
        checklist: ChecklistState | dict[str, Any] | None = None,
        milestone_dates: dict[Any, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> Customer:
        state = checklist if checklist is not None else ChecklistState.default()
        if current_milestone is None:
            current_milestone = (
                state.current_stage if isinstance(state, ChecklistState)
                else ChecklistState.from_record(state).current_stage
            )

        values = {
            "name": name,
            "phone": phone,
            "email": email,
            "notes": notes,
            "sales_consultant": sales_consultant,
            "vsa_no": vsa_no,
            "deal_closed": deal_closed,
            "archive_status": archive_status,
            "archived_at": archived_at,
            "current_milestone": current_milestone,
            "checklist": state,
            "milestone_dates": milestone_dates if milestone_dates is not None else default_stage_dates(),
            "details": details,
        }
        encoded = {col: self._encode(col, v) for col, v in values.items()}
        now = time.time()

        columns = ["user_id", *encoded.keys(), "created_at", "updated_at"]
        params = [user_id, *encoded.values(), now, now]
        placeholders = ", ".join("?" for _ in columns)

        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"INSERT INTO customers({', '.join(columns)}) VALUES ({placeholders})",
                params,
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for customers insert")
            row = self._fetch_row(conn, int(rowid))
        finally:
            conn.close()

        customer = self._row_to_customer(row)
        logger.debug("Customer added id=%s name=%s", customer.id, customer.name)
        self._publish(ChangeKind.INSERT, new=customer)
        return customer

    def get_customer(self, customer_id: int) -> Customer | None:
        conn = self._get_conn()
        try:
            row = self._fetch_row(conn, customer_id)
            return self._row_to_customer(row) if row else None
        finally:
            conn.close()

    def list_customers(self) -> list[Customer]:
        """All customers, newest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM customers ORDER BY created_at DESC, id DESC").fetchall()
            return [self._row_to_customer(r) for r in rows]
        finally:
            conn.close()

    def update_customer(self, customer_id: int, updates: dict[str, Any]) -> Customer | None:
        """
        Apply `updates` in one UPDATE statement.

        Returns the stored record, or None when no customer has that id.
        Concurrent writers: last write wins.
        """
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Unknown customer field(s): {', '.join(sorted(unknown))}")

        fields: list[str] = []
        params: list[Any] = []
        for column, value in updates.items():
            fields.append(f"{column} = ?")
            params.append(self._encode(column, value))

        if not fields:
            return self.get_customer(customer_id)

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(customer_id))

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE customers SET {', '.join(fields)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = self._fetch_row(conn, customer_id)
        finally:
            conn.close()

        customer = self._row_to_customer(row)
        logger.debug("Customer updated id=%s fields=%s", customer_id, sorted(updates))
        self._publish(ChangeKind.UPDATE, new=customer)
        return customer

    def delete_customer(self, customer_id: int) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM customers WHERE id = ?", (int(customer_id),))
            conn.commit()
            deleted = cur.rowcount == 1
        finally:
            conn.close()

        if deleted:
            self._publish(ChangeKind.DELETE, old={"id": int(customer_id)})
        return deleted
