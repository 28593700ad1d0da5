# src/dealer_crm/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the services.

Services depend on Protocols instead of concrete implementations.
This keeps the backend (SQLite today, a hosted database tomorrow) swappable
and makes testing easier.
"""

from collections.abc import Callable
from datetime import date
from enum import StrEnum
from typing import Any, Protocol


class NotificationLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    """Transient user-visible notifications (toasts in a UI, a printed line in the console)."""
    def notify(self, message: str, *, level: NotificationLevel = NotificationLevel.INFO) -> None: ...


class RealtimeChannel(Protocol):
    def unsubscribe(self) -> None: ...


class ChangeFeed(Protocol):
    """
    Push-based change notifications for a table.

    on_event receives ChangeEvent objects, on_status receives ChannelStatus values.
    Both are invoked on the event loop that opened the channel.
    """

    def channel(
            self,
            table: str,
            on_event: Callable[[Any], None],
            on_status: Callable[[Any], None] | None = None,
    ) -> RealtimeChannel: ...


class CustomerRepo(Protocol):
    def list_customers(self) -> list[Any]: ...
    def get_customer(self, customer_id: int) -> Any | None: ...

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
            archive_status: Any = None,
            archived_at: float | None = None,
            current_milestone: Any = None,
            checklist: Any = None,
            milestone_dates: Any = None,
            details: dict[str, Any] | None = None,
    ) -> Any: ...

    # All keys in `updates` are written in one statement.
    def update_customer(self, customer_id: int, updates: dict[str, Any]) -> Any | None: ...
    def delete_customer(self, customer_id: int) -> bool: ...


class TodoRepo(Protocol):
    def list_todos(self) -> list[Any]: ...
    def get_todo(self, todo_id: int) -> Any | None: ...
    def list_open_todos(self, *, customer_id: int | None, milestone_id: str | None) -> list[Any]: ...

    def add_todo(
            self,
            *,
            user_id: str,
            text: str,
            priority: Any = None,  # Priority (kept as Any to avoid import coupling)
            due_date: date | None = None,
            customer_id: int | None = None,
            customer_name: str | None = None,
            milestone_id: str | None = None,
            checklist_item_id: str | None = None,
    ) -> Any: ...

    def update_todo(self, todo_id: int, updates: dict[str, Any]) -> Any | None: ...
    def delete_todo(self, todo_id: int) -> bool: ...
