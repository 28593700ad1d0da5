# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from dealer_crm.customers.customer_service import CustomerService
from dealer_crm.customers.customer_store import CustomerStore
from dealer_crm.pipeline.checklist_editor import ChecklistEditor
from dealer_crm.realtime.change_feed import LocalChangeFeed
from dealer_crm.todos.todo_service import TodoService
from dealer_crm.todos.todo_store import TodoStore

from .fakes import FakeNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the services.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="dealer-crm-test",
        log_level="DEBUG",
        console_enabled=False,
        user_id="tester",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "crm.sqlite3",
        export_dir=tmp_path / "exports",
        # Keep the tests fast
        remote_timeout_seconds=5.0,
        retry_max_attempts=3,
        retry_backoff_seconds=0.0,
        batch_concurrency=2,
        batch_delay_seconds=0.0,
        realtime_reconnect_seconds=0.05,
    )


@pytest.fixture()
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture()
def customer_store(settings: SimpleNamespace, feed: LocalChangeFeed) -> CustomerStore:
    return CustomerStore(settings.db_path, feed=feed)


@pytest.fixture()
def todo_store(settings: SimpleNamespace, feed: LocalChangeFeed) -> TodoStore:
    return TodoStore(settings.db_path, feed=feed)


@pytest.fixture()
def customers(settings: SimpleNamespace, customer_store: CustomerStore) -> CustomerService:
    return CustomerService(customer_store, user_id=settings.user_id, timeout_seconds=settings.remote_timeout_seconds)


@pytest.fixture()
def todos(settings: SimpleNamespace, todo_store: TodoStore) -> TodoService:
    return TodoService(todo_store, user_id=settings.user_id, timeout_seconds=settings.remote_timeout_seconds)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def editor(customers: CustomerService, todos: TodoService, notifier: FakeNotifier) -> ChecklistEditor:
    return ChecklistEditor(customers, todos, notifier)
