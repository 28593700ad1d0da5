# src/dealer_crm/todos/todo_service.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from ..core.errors import RemoteOperationError, ValidationError, handle_remote_error
from ..core.ports import ChangeFeed, TodoRepo
from ..core.resilience import call_blocking
from ..realtime.change_feed import ChangeEvent
from ..realtime.sync import DEFAULT_RECONNECT_DELAY_SECONDS, RealtimeSync, apply_change
from .todo_api import apply_filter, filter_for_customer, filter_overdue, filter_today
from .todo_models import Priority, Todo, TodoFilter
from .todo_store import TABLE

logger = logging.getLogger(__name__)


class TodoService:
    """
    Client-side todo list store.

    Holds the local collection plus loading/saving/error flags. Reads store the
    error message and return; writes store it and re-raise.
    """

    def __init__(
        self,
        repo: TodoRepo,
        *,
        user_id: str,
        feed: ChangeFeed | None = None,
        timeout_seconds: float = 30.0,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._repo = repo
        self._user_id = user_id
        self._timeout = float(timeout_seconds)

        self.todos: list[Todo] = []
        self.active_filter = TodoFilter.ALL
        self.is_loading = False
        self.is_saving = False
        self.error: str | None = None

        self._sync: RealtimeSync | None = None
        if feed is not None:
            self._sync = RealtimeSync(
                feed, TABLE, self._on_change, reconnect_delay_seconds=reconnect_delay_seconds
            )

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await call_blocking(fn, *args, operation_name=operation, timeout_seconds=self._timeout)
        except Exception as e:
            handle_remote_error(e, operation)

    # ---- CRUD ----

    async def fetch_todos(self) -> None:
        self.is_loading = True
        self.error = None
        try:
            self.todos = await self._call("fetchTodos", self._repo.list_todos)
        except Exception as e:
            self.error = str(e)
        finally:
            self.is_loading = False

    async def fetch_open_todos(self, customer_id: int | None, milestone_id: str | None) -> list[Todo]:
        """Open todos for a customer/stage straight from the backend (raises on failure)."""

        def query() -> list[Todo]:
            return self._repo.list_open_todos(customer_id=customer_id, milestone_id=milestone_id)

        return await self._call("fetchOpenTodos", query)

    async def create_todo(
        self,
        text: str,
        *,
        priority: Priority | str = Priority.MEDIUM,
        due_date: date | None = None,
        customer_id: int | None = None,
        customer_name: str | None = None,
        milestone_id: str | None = None,
        checklist_item_id: str | None = None,
    ) -> Todo:
        self.error = None
        if not text or not text.strip():
            self.error = "Task text is required"
            raise ValidationError(self.error)

        def insert() -> Todo:
            return self._repo.add_todo(
                user_id=self._user_id,
                text=text,
                priority=priority,
                due_date=due_date,
                customer_id=customer_id,
                customer_name=customer_name,
                milestone_id=milestone_id,
                checklist_item_id=checklist_item_id,
            )

        self.is_saving = True
        try:
            todo: Todo = await self._call("createTodo", insert)
        except Exception as e:
            self.error = str(e)
            raise
        finally:
            self.is_saving = False

        self._upsert_local(todo, prepend=True)
        return todo

    async def update_todo(self, todo_id: int, updates: dict[str, Any]) -> Todo:
        self.is_saving = True
        self.error = None
        try:
            todo = await self._call("updateTodo", self._repo.update_todo, todo_id, updates)
            if todo is None:
                raise RemoteOperationError(f"Task {todo_id} not found", operation="updateTodo")
        except Exception as e:
            self.error = str(e)
            raise
        finally:
            self.is_saving = False

        self._upsert_local(todo)
        return todo

    async def delete_todo(self, todo_id: int) -> None:
        self.is_saving = True
        self.error = None
        try:
            await self._call("deleteTodo", self._repo.delete_todo, todo_id)
        except Exception as e:
            self.error = str(e)
            raise
        finally:
            self.is_saving = False

        self.todos = [t for t in self.todos if t.id != todo_id]

    async def toggle_todo(self, todo_id: int) -> Todo | None:
        todo = self.get(todo_id)
        if todo is None:
            return None
        return await self.update_todo(todo_id, {"completed": not todo.completed})

    # ---- local views ----

    def get(self, todo_id: int) -> Todo | None:
        return next((t for t in self.todos if t.id == todo_id), None)

    def set_active_filter(self, todo_filter: TodoFilter | str) -> None:
        self.active_filter = TodoFilter(todo_filter)

    def filtered_todos(self, today: date | None = None) -> list[Todo]:
        return apply_filter(self.todos, self.active_filter, today)

    def customer_todos(self, customer_id: int) -> list[Todo]:
        return filter_for_customer(self.todos, customer_id)

    def today_todos(self, today: date | None = None) -> list[Todo]:
        return filter_today(self.todos, today or date.today())

    def overdue_todos(self, today: date | None = None) -> list[Todo]:
        return filter_overdue(self.todos, today or date.today())

    def clear_error(self) -> None:
        self.error = None

    def _upsert_local(self, todo: Todo, *, prepend: bool = False) -> None:
        if any(t.id == todo.id for t in self.todos):
            self.todos = [todo if t.id == todo.id else t for t in self.todos]
        elif prepend:
            self.todos = [todo, *self.todos]

    # ---- realtime ----

    def subscribe_to_changes(self) -> Callable[[], None]:
        if self._sync is None:
            raise RuntimeError("TodoService has no change feed attached")
        return self._sync.subscribe()

    def unsubscribe(self) -> None:
        if self._sync is not None:
            self._sync.unsubscribe()

    @property
    def realtime(self) -> RealtimeSync | None:
        return self._sync

    def _on_change(self, event: ChangeEvent) -> None:
        self.todos = apply_change(self.todos, event, Todo.from_record)
