# tests/test_services.py

from __future__ import annotations

import time
from datetime import date, timedelta

import pytest

from dealer_crm.core.errors import RemoteOperationError, ValidationError
from dealer_crm.customers.customer_models import ArchiveStatus
from dealer_crm.customers.customer_service import CustomerService
from dealer_crm.pipeline.milestones import Stage
from dealer_crm.todos.todo_models import Priority, TodoFilter
from dealer_crm.todos.todo_service import TodoService
from dealer_crm.todos.todo_store import TodoStore


class OfflineRepo:
    def list_todos(self):
        raise ConnectionError("offline")

    def list_customers(self):
        raise ConnectionError("offline")


class SlowRepo:
    def list_todos(self):
        time.sleep(0.3)
        return []


# ---- todos ----


@pytest.mark.asyncio
async def test_create_todo_requires_text(todos: TodoService, todo_store: TodoStore) -> None:
    with pytest.raises(ValidationError):
        await todos.create_todo("   ")
    assert todos.error == "Task text is required"
    assert todo_store.count_todos() == 0


@pytest.mark.asyncio
async def test_create_todo_prepends_locally(todos: TodoService) -> None:
    first = await todos.create_todo("First")
    second = await todos.create_todo("Second", priority=Priority.HIGH)
    assert [t.id for t in todos.todos] == [second.id, first.id]
    assert todos.is_saving is False
    assert todos.error is None
    assert second.user_id == "tester"


@pytest.mark.asyncio
async def test_fetch_failure_is_stored_not_raised() -> None:
    svc = TodoService(OfflineRepo(), user_id="u")
    await svc.fetch_todos()
    assert svc.error == "offline"
    assert svc.is_loading is False
    assert svc.todos == []

    svc.clear_error()
    assert svc.error is None


@pytest.mark.asyncio
async def test_fetch_timeout_is_reported() -> None:
    svc = TodoService(SlowRepo(), user_id="u", timeout_seconds=0.05)
    await svc.fetch_todos()
    assert svc.error == "fetchTodos timed out after 0.05s"


@pytest.mark.asyncio
async def test_toggle_update_and_delete(todos: TodoService) -> None:
    todo = await todos.create_todo("Call bank")

    toggled = await todos.toggle_todo(todo.id)
    assert toggled is not None and toggled.completed is True
    assert todos.get(todo.id).completed is True

    assert await todos.toggle_todo(12345) is None

    with pytest.raises(RemoteOperationError):
        await todos.update_todo(12345, {"text": "nope"})
    assert "not found" in (todos.error or "")

    await todos.delete_todo(todo.id)
    assert todos.todos == []


@pytest.mark.asyncio
async def test_filters(todos: TodoService) -> None:
    today = date.today()
    due_today = await todos.create_todo("today", due_date=today)
    overdue = await todos.create_todo("late", due_date=today - timedelta(days=2))
    urgent = await todos.create_todo("urgent", priority=Priority.URGENT, customer_id=7)
    done = await todos.create_todo("done", priority=Priority.HIGH, due_date=today - timedelta(days=5))
    await todos.toggle_todo(done.id)

    assert [t.id for t in todos.today_todos()] == [due_today.id]
    assert [t.id for t in todos.overdue_todos()] == [overdue.id]
    assert [t.id for t in todos.customer_todos(7)] == [urgent.id]

    todos.set_active_filter(TodoFilter.HIGH_PRIORITY)
    assert [t.id for t in todos.filtered_todos()] == [urgent.id]
    todos.set_active_filter("completed")
    assert [t.id for t in todos.filtered_todos()] == [done.id]
    todos.set_active_filter("all")
    assert len(todos.filtered_todos()) == 4

    with pytest.raises(ValueError):
        todos.set_active_filter("someday")


@pytest.mark.asyncio
async def test_fetch_open_todos(todos: TodoService) -> None:
    linked = await todos.create_todo("Test Drive: ID Scanned", customer_id=1, milestone_id="test_drive")
    await todos.create_todo("unrelated")
    rows = await todos.fetch_open_todos(1, "test_drive")
    assert [t.id for t in rows] == [linked.id]


# ---- customers ----


@pytest.mark.asyncio
async def test_customer_create_and_update(customers: CustomerService) -> None:
    with pytest.raises(ValidationError):
        await customers.create_customer("  ")

    customer = await customers.create_customer("Tan", phone="98765432")
    assert customers.customers == [customer]

    updated = await customers.update_customer(customer.id, {"notes": "prefers weekends"})
    assert updated.notes == "prefers weekends"
    assert customers.get(customer.id).notes == "prefers weekends"

    with pytest.raises(RemoteOperationError):
        await customers.update_customer(999, {"notes": "x"})
    assert customers.error and "999" in customers.error
    assert customers.is_saving is False


@pytest.mark.asyncio
async def test_customer_fetch_failure_is_stored() -> None:
    svc = CustomerService(OfflineRepo(), user_id="u")
    await svc.fetch_customers()
    assert svc.error == "offline"
    assert svc.customers == []


@pytest.mark.asyncio
async def test_fetch_customer_by_id_refreshes_local_copy(customers: CustomerService, customer_store) -> None:
    customer = await customers.create_customer("Lee")
    customer_store.update_customer(customer.id, {"vsa_no": "VSA-001"})

    fresh = await customers.fetch_customer_by_id(customer.id)
    assert fresh is not None and fresh.vsa_no == "VSA-001"
    assert customers.get(customer.id).vsa_no == "VSA-001"
    assert await customers.fetch_customer_by_id(404) is None


@pytest.mark.asyncio
async def test_selection_and_delete(customers: CustomerService) -> None:
    a = await customers.create_customer("A")
    b = await customers.create_customer("B")

    assert customers.select_customer(a.id) == a
    assert customers.selected_customer == a

    await customers.delete_customer(a.id)
    assert customers.selected_customer is None
    assert customers.customers == [b]


@pytest.mark.asyncio
async def test_archive_and_unarchive(customers: CustomerService) -> None:
    active = await customers.create_customer("Stays")
    leaving = await customers.create_customer("Leaves")

    before = time.time()
    archived = await customers.archive_customer(leaving.id, "lost")
    assert archived.archive_status == ArchiveStatus.LOST
    assert archived.archived_at is not None and archived.archived_at >= before

    assert customers.active_customers() == [active]
    assert [c.id for c in customers.archived_customers()] == [leaving.id]

    restored = await customers.unarchive_customer(leaving.id)
    assert restored.archive_status is None
    assert restored.archived_at is None
    assert customers.archived_customers() == []


@pytest.mark.asyncio
async def test_checklist_shortcuts_persist_immediately(customers: CustomerService, customer_store) -> None:
    customer = await customers.create_customer("Ng")

    await customers.update_checklist_item(customer.id, Stage.TEST_DRIVE, "id_scanned", True)
    assert customer_store.get_customer(customer.id).checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")

    with pytest.raises(ValidationError):
        await customers.update_checklist_item(customer.id, Stage.TEST_DRIVE, "made_up", True)

    moved = await customers.set_current_milestone(customer.id, "registration")
    assert moved is not None
    assert moved.current_milestone == Stage.REGISTRATION
    assert moved.checklist.current_stage == Stage.REGISTRATION

    assert await customers.set_current_milestone(31337, Stage.NPS) is None
    assert await customers.update_checklist_item(31337, Stage.NPS, "nps_survey_sent", True) is None
