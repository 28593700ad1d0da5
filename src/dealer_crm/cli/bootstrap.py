# src/dealer_crm/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite stores, the change feed and the services into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import Notifier
from ..core.state import AppState
from ..customers.customer_service import CustomerService
from ..customers.customer_store import CustomerStore
from ..pipeline.checklist_editor import ChecklistEditor
from ..realtime.change_feed import LocalChangeFeed
from ..todos.todo_service import TodoService
from ..todos.todo_store import TodoStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.export_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, notifier: Notifier | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    feed = LocalChangeFeed()
    customer_store = CustomerStore(settings.db_path, feed=feed)
    todo_store = TodoStore(settings.db_path, feed=feed)

    customers = CustomerService(
        customer_store,
        user_id=settings.user_id,
        feed=feed,
        timeout_seconds=settings.remote_timeout_seconds,
        reconnect_delay_seconds=settings.realtime_reconnect_seconds,
    )
    todos = TodoService(
        todo_store,
        user_id=settings.user_id,
        feed=feed,
        timeout_seconds=settings.remote_timeout_seconds,
        reconnect_delay_seconds=settings.realtime_reconnect_seconds,
    )

    state = AppState(
        settings=settings,
        feed=feed,
        customer_store=customer_store,
        todo_store=todo_store,
        customers=customers,
        todos=todos,
        editor=ChecklistEditor(customers, todos, notifier),
        notifier=notifier,
    )
    logger.info("AppState ready db=%s user=%s", settings.db_path, settings.user_id)
    return state


async def start_sync(state: AppState) -> None:
    """Initial load of both collections, then live updates from the change feed."""
    await state.customers.fetch_customers()
    await state.todos.fetch_todos()
    state.customers.subscribe_to_changes()
    state.todos.subscribe_to_changes()


def stop_sync(state: AppState) -> None:
    state.customers.unsubscribe()
    state.todos.unsubscribe()
