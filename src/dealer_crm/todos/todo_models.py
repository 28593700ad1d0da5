# src/dealer_crm/todos/todo_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any

from ..pipeline.milestones import parse_date


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class TodoFilter(StrEnum):
    ALL = "all"
    TODAY = "today"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    HIGH_PRIORITY = "high_priority"


@dataclass(slots=True)
class Todo:
    id: int
    user_id: str
    text: str
    completed: bool
    priority: Priority
    created_at: float
    updated_at: float

    due_date: date | None = None
    customer_id: int | None = None
    customer_name: str | None = None

    # Set only for tasks generated from a checklist item.
    milestone_id: str | None = None
    checklist_item_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "text": self.text,
            "completed": self.completed,
            "priority": self.priority.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "milestone_id": self.milestone_id,
            "checklist_item_id": self.checklist_item_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, rec: dict[str, Any]) -> Todo:
        customer_id = rec.get("customer_id")
        return cls(
            id=int(rec["id"]),
            user_id=str(rec.get("user_id") or ""),
            text=str(rec.get("text") or ""),
            completed=bool(rec.get("completed")),
            priority=Priority.from_db(rec.get("priority")),
            created_at=float(rec.get("created_at") or 0.0),
            updated_at=float(rec.get("updated_at") or 0.0),
            due_date=parse_date(rec.get("due_date")),
            customer_id=int(customer_id) if customer_id is not None else None,
            customer_name=rec.get("customer_name"),
            milestone_id=rec.get("milestone_id"),
            checklist_item_id=rec.get("checklist_item_id"),
        )
