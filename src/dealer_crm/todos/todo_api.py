# src/dealer_crm/todos/todo_api.py

"""Pure filters over a list of todos (sidebar views)."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from .todo_models import Priority, Todo, TodoFilter


def filter_today(todos: Iterable[Todo], today: date) -> list[Todo]:
    return [t for t in todos if t.due_date == today and not t.completed]


def filter_overdue(todos: Iterable[Todo], today: date) -> list[Todo]:
    return [t for t in todos if t.due_date is not None and t.due_date < today and not t.completed]


def filter_completed(todos: Iterable[Todo]) -> list[Todo]:
    return [t for t in todos if t.completed]


def filter_high_priority(todos: Iterable[Todo]) -> list[Todo]:
    return [
        t for t in todos
        if t.priority in (Priority.HIGH, Priority.URGENT) and not t.completed
    ]


def filter_for_customer(todos: Iterable[Todo], customer_id: int) -> list[Todo]:
    return [t for t in todos if t.customer_id == customer_id]


def apply_filter(todos: Iterable[Todo], todo_filter: TodoFilter, today: date | None = None) -> list[Todo]:
    today = today or date.today()
    if todo_filter == TodoFilter.TODAY:
        return filter_today(todos, today)
    if todo_filter == TodoFilter.OVERDUE:
        return filter_overdue(todos, today)
    if todo_filter == TodoFilter.COMPLETED:
        return filter_completed(todos)
    if todo_filter == TodoFilter.HIGH_PRIORITY:
        return filter_high_priority(todos)
    return list(todos)
