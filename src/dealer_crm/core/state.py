# src/dealer_crm/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..customers.customer_service import CustomerService
from ..customers.customer_store import CustomerStore
from ..pipeline.checklist_editor import ChecklistEditor
from ..realtime.change_feed import LocalChangeFeed
from ..todos.todo_service import TodoService
from ..todos.todo_store import TodoStore
from .ports import Notifier


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    feed: LocalChangeFeed
    customer_store: CustomerStore
    todo_store: TodoStore

    customers: CustomerService
    todos: TodoService
    editor: ChecklistEditor

    notifier: Notifier | None = None
