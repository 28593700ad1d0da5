# tests/test_commands.py

from __future__ import annotations

import pytest

from dealer_crm.cli.bootstrap import create_initial_state
from dealer_crm.cli.commands import CommandRegistry, registry
from dealer_crm.core.errors import ValidationError
from dealer_crm.core.state import AppState

from .fakes import FakeNotifier


@pytest.fixture()
def state(settings) -> AppState:
    return create_initial_state(settings=settings, notifier=FakeNotifier())


@pytest.mark.asyncio
async def test_command_registry_routes_sync_and_async_handlers(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2 " + " ".join(args)

    async def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert await reg.handle(state, "/a x y") == "h2 x y"
    assert await reg.handle(state, "/BEE", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_domain_errors_become_replies(state) -> None:
    reg = CommandRegistry()

    def broken(state, args):
        raise ValidationError("Customer name is required")

    reg.register("x", broken, "x")
    assert await reg.handle(state, "/x") == "Error: Customer name is required"


@pytest.mark.asyncio
async def test_checklist_workflow_through_commands(state) -> None:
    reply = await registry.handle(state, "/add Tan Ah Kow 91234567")
    assert reply is not None and "Tan Ah Kow" in reply
    customer = state.customers.customers[0]
    assert customer.phone == "91234567"

    assert "Open a customer first" in (await registry.handle(state, "/checklist") or "")

    await registry.handle(state, f"/open {customer.id}")
    assert state.editor.customer is not None

    await registry.handle(state, "/toggle test_drive id_scanned")
    assert state.editor.checklist.is_checked("test_drive", "id_scanned")
    assert "*unsaved*" in (await registry.handle(state, "/checklist") or "")

    await registry.handle(state, "/date test_drive 2026-03-01")
    assert await registry.handle(state, "/save") == "Saved."
    assert await registry.handle(state, "/save") == "Nothing to save."
    assert state.customer_store.get_customer(customer.id).checklist.is_checked("test_drive", "id_scanned")

    assert await registry.handle(state, "/gen") == "Created 3 tasks for Test Drive"
    assert await registry.handle(state, "/gen test_drive") == "Tasks for Test Drive already exist"

    listing = await registry.handle(state, "/todos customer") or ""
    assert "Test Drive: Test Drive Form" in listing
    assert "!high" in listing

    bad = await registry.handle(state, "/stage handover") or ""
    assert bad.startswith("Error:")


@pytest.mark.asyncio
async def test_todo_and_archive_commands(state) -> None:
    await registry.handle(state, "/add Lim")
    customer = state.customers.customers[0]

    reply = await registry.handle(state, "/todo !urgent Chase insurance") or ""
    assert "Chase insurance" in reply and "!urgent" in reply
    todo = state.todos.todos[0]

    assert "[x]" in (await registry.handle(state, f"/done {todo.id}") or "")
    assert "No task" in (await registry.handle(state, "/done 999") or "")

    assert "Archived" in (await registry.handle(state, f"/archive {customer.id} lost") or "")
    assert state.customers.archived_customers()[0].id == customer.id
    assert "Lim" in (await registry.handle(state, "/customers archived") or "")

    await registry.handle(state, f"/unarchive {customer.id}")
    assert state.customers.archived_customers() == []

    missing = await registry.handle(state, "/archive 4242 lost") or ""
    assert missing.startswith("Error:")


@pytest.mark.asyncio
async def test_export_command(state, settings) -> None:
    await registry.handle(state, "/add Export Me")
    reply = await registry.handle(state, "/export") or ""
    assert "Exported 1 customer(s)" in reply
    assert list(settings.export_dir.glob("customers-*.json"))
