# tests/test_checklist_editor.py

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from dealer_crm.core.errors import RemoteOperationError, ValidationError
from dealer_crm.core.ports import NotificationLevel
from dealer_crm.customers.customer_service import CustomerService
from dealer_crm.pipeline.checklist_editor import ChecklistEditor, GenerationOutcome
from dealer_crm.pipeline.milestones import CHECKLISTS, Stage
from dealer_crm.todos.todo_models import Priority
from dealer_crm.todos.todo_service import TodoService

from .fakes import FakeNotifier, FlakyCustomerRepo, FlakyTodoRepo


async def _opened(editor: ChecklistEditor, customers: CustomerService, name: str = "Tan"):
    customer = await customers.create_customer(name)
    editor.load_customer(customer)
    return customer


# ---- edit buffer ----


@pytest.mark.asyncio
async def test_edits_stay_in_buffer_until_save(editor, customers, customer_store) -> None:
    customer = await _opened(editor, customers)
    assert editor.has_changes is False

    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    editor.set_stage_date(Stage.CLOSE_DEAL, "2026-06-01")
    editor.set_current_stage(Stage.CLOSE_DEAL)

    assert editor.has_changes is True
    assert editor.stage_progress(Stage.TEST_DRIVE) == 25
    stored = customer_store.get_customer(customer.id)
    assert not stored.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")
    assert stored.current_milestone == Stage.TEST_DRIVE

    assert await editor.save() is True
    assert editor.has_changes is False

    stored = customer_store.get_customer(customer.id)
    assert stored.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")
    assert stored.current_milestone == Stage.CLOSE_DEAL
    assert stored.milestone_dates[Stage.CLOSE_DEAL] == date(2026, 6, 1)
    assert customers.get(customer.id).current_milestone == Stage.CLOSE_DEAL


@pytest.mark.asyncio
async def test_save_without_changes_is_noop(customer_store, todos, settings) -> None:
    repo = FlakyCustomerRepo(customer_store)
    customers = CustomerService(repo, user_id=settings.user_id)
    editor = ChecklistEditor(customers, todos)
    await _opened(editor, customers)

    assert await editor.save() is False
    assert repo.update_calls == []


@pytest.mark.asyncio
async def test_save_writes_one_update_with_workflow_fields(customer_store, todos, settings) -> None:
    repo = FlakyCustomerRepo(customer_store)
    customers = CustomerService(repo, user_id=settings.user_id)
    editor = ChecklistEditor(customers, todos)
    await _opened(editor, customers)

    editor.toggle_item(Stage.NPS, "nps_survey_sent", True)
    await editor.save()

    assert len(repo.update_calls) == 1
    _cid, updates = repo.update_calls[0]
    assert set(updates) == {"checklist", "milestone_dates", "current_milestone"}


@pytest.mark.asyncio
async def test_cancel_after_save_is_noop(editor, customers) -> None:
    await _opened(editor, customers)
    editor.toggle_item(Stage.TEST_DRIVE, "test_drive_form", True)
    editor.set_stage_date(Stage.DELIVERY, date(2026, 7, 1))
    await editor.save()

    checklist_before = editor.checklist.to_record()
    dates_before = dict(editor.stage_dates)

    editor.cancel()

    assert editor.checklist.to_record() == checklist_before
    assert editor.stage_dates == dates_before
    assert editor.has_changes is False


@pytest.mark.asyncio
async def test_cancel_discards_edits(editor, customers) -> None:
    await _opened(editor, customers)
    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    editor.set_current_stage(Stage.NPS)

    editor.cancel()

    assert not editor.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")
    assert editor.current_stage == Stage.TEST_DRIVE
    assert editor.has_changes is False


@pytest.mark.asyncio
async def test_switching_customer_resets_buffer(editor, customers) -> None:
    await _opened(editor, customers, "First")
    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)

    other = await customers.create_customer("Second")
    editor.load_customer(other)

    assert editor.customer == other
    assert editor.has_changes is False
    assert not editor.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")


@pytest.mark.asyncio
async def test_failed_save_keeps_buffer_for_retry(customer_store, todos, settings) -> None:
    repo = FlakyCustomerRepo(customer_store)
    customers = CustomerService(repo, user_id=settings.user_id)
    notifier = FakeNotifier()
    editor = ChecklistEditor(customers, todos, notifier)
    customer = await _opened(editor, customers)

    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    repo.fail_updates = True

    with pytest.raises(RemoteOperationError):
        await editor.save()

    assert editor.has_changes is True
    assert editor.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")
    assert editor.error
    assert notifier.sent[-1].level == NotificationLevel.ERROR
    assert not customer_store.get_customer(customer.id).checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")

    repo.fail_updates = False
    assert await editor.save() is True
    assert customer_store.get_customer(customer.id).checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")


@pytest.mark.asyncio
async def test_cancel_picks_up_changes_persisted_after_open(editor, customers, customer_store) -> None:
    customer = await _opened(editor, customers)

    await customers.update_checklist_item(customer.id, Stage.TEST_DRIVE, "id_scanned", True)
    editor.toggle_item(Stage.NPS, "nps_survey_sent", True)
    editor.cancel()

    assert editor.checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")
    assert not editor.checklist.is_checked(Stage.NPS, "nps_survey_sent")
    assert customer_store.get_customer(customer.id).checklist.is_checked(Stage.TEST_DRIVE, "id_scanned")


@pytest.mark.asyncio
async def test_refresh_follows_store_only_without_pending_edits(editor, customers) -> None:
    customer = await _opened(editor, customers)

    await customers.set_current_milestone(customer.id, Stage.DELIVERY)
    editor.refresh()
    assert editor.current_stage == Stage.DELIVERY

    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    await customers.set_current_milestone(customer.id, Stage.NPS)
    editor.refresh()
    assert editor.current_stage == Stage.DELIVERY
    assert editor.has_changes is True


@pytest.mark.asyncio
async def test_toggle_unknown_item_is_rejected(editor, customers) -> None:
    await _opened(editor, customers)
    with pytest.raises(ValidationError):
        editor.toggle_item(Stage.TEST_DRIVE, "no_such_item", True)
    assert editor.has_changes is False


def test_edits_need_a_loaded_customer(editor) -> None:
    with pytest.raises(ValidationError):
        editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    with pytest.raises(ValidationError):
        editor.set_current_stage(Stage.NPS)
    with pytest.raises(ValidationError):
        editor.set_stage_date(Stage.NPS, "2026-01-01")
    assert editor.has_changes is False


# ---- task generation ----


@pytest.mark.asyncio
async def test_generates_one_task_per_unchecked_item(editor, customers, todo_store, notifier) -> None:
    customer = await _opened(editor, customers)

    result = await editor.create_todos_from_checklist(Stage.TEST_DRIVE)

    assert result.outcome == GenerationOutcome.CREATED
    assert result.created == 4
    created = todo_store.list_open_todos(customer_id=customer.id, milestone_id="test_drive")
    assert sorted(t.text for t in created) == sorted(f"Test Drive: {i.label}" for i in CHECKLISTS[Stage.TEST_DRIVE])
    assert {t.priority for t in created} == {Priority.MEDIUM}
    assert all(t.due_date is None for t in created)
    assert {t.checklist_item_id for t in created} == {i.id for i in CHECKLISTS[Stage.TEST_DRIVE]}
    assert all(t.customer_name == "Tan" for t in created)
    assert notifier.messages[-1] == "Created 4 tasks for Test Drive"


@pytest.mark.asyncio
async def test_generation_is_idempotent(editor, customers, todo_store) -> None:
    await _opened(editor, customers)

    first = await editor.create_todos_from_checklist(Stage.CLOSE_DEAL)
    second = await editor.create_todos_from_checklist(Stage.CLOSE_DEAL)

    assert first.created == 5
    assert second.outcome == GenerationOutcome.ALREADY_EXIST
    assert second.created == 0
    assert todo_store.count_todos() == 5


@pytest.mark.asyncio
async def test_generation_skips_checked_and_existing_items(editor, customers, todos, todo_store) -> None:
    customer = await _opened(editor, customers)
    editor.toggle_item(Stage.TEST_DRIVE, "id_scanned", True)
    await todos.create_todo(
        "Test Drive: Test Drive Form", customer_id=customer.id, milestone_id="test_drive"
    )
    # A completed task with the same text does not block generation.
    done = await todos.create_todo(
        "Test Drive: Input BYD CRM", customer_id=customer.id, milestone_id="test_drive"
    )
    await todos.toggle_todo(done.id)

    result = await editor.create_todos_from_checklist(Stage.TEST_DRIVE)

    assert result.created == 2
    open_texts = sorted(
        t.text for t in todo_store.list_open_todos(customer_id=customer.id, milestone_id="test_drive")
    )
    assert open_texts == [
        "Test Drive: Customer Details Filled",
        "Test Drive: Input BYD CRM",
        "Test Drive: Test Drive Form",
    ]


@pytest.mark.asyncio
async def test_complete_stage_creates_nothing(editor, customers, todo_store) -> None:
    await _opened(editor, customers)
    editor.toggle_item(Stage.NPS, "nps_survey_sent", True)
    editor.toggle_item(Stage.NPS, "nps_response_received", True)

    result = await editor.create_todos_from_checklist(Stage.NPS)

    assert result.outcome == GenerationOutcome.ALREADY_COMPLETE
    assert result.created == 0
    assert todo_store.count_todos() == 0


@pytest.mark.asyncio
async def test_stage_date_sets_priority_and_due_date(editor, customers, todo_store) -> None:
    customer = await _opened(editor, customers)
    editor.set_stage_date(Stage.NPS, date(2026, 9, 30))

    await editor.create_todos_from_checklist(Stage.NPS)

    created = todo_store.list_open_todos(customer_id=customer.id, milestone_id="nps")
    assert len(created) == 2
    assert {t.priority for t in created} == {Priority.HIGH}
    assert {t.due_date for t in created} == {date(2026, 9, 30)}


@pytest.mark.asyncio
async def test_failure_aborts_remaining_creations(customers, todo_store, settings, notifier) -> None:
    repo = FlakyTodoRepo(todo_store, fail_add_after=2)
    todos = TodoService(repo, user_id=settings.user_id)
    editor = ChecklistEditor(customers, todos, notifier)
    await _opened(editor, customers)

    result = await editor.create_todos_from_checklist(Stage.DELIVERY)

    assert result.outcome == GenerationOutcome.FAILED
    assert result.created == 2
    assert result.error
    assert repo.add_calls == 3
    # Partial creation is kept.
    assert todo_store.count_todos() == 2
    assert notifier.sent[-1].level == NotificationLevel.ERROR
    assert editor.is_generating is False


@pytest.mark.asyncio
async def test_open_task_lookup_failure_is_reported(customers, todo_store, settings) -> None:
    todos = TodoService(FlakyTodoRepo(todo_store, fail_open_lookup=True), user_id=settings.user_id)
    editor = ChecklistEditor(customers, todos)
    await _opened(editor, customers)

    result = await editor.create_todos_from_checklist(Stage.TEST_DRIVE)

    assert result.outcome == GenerationOutcome.FAILED
    assert result.created == 0
    assert todo_store.count_todos() == 0


@pytest.mark.asyncio
async def test_concurrent_generation_is_ignored(editor, customers, todo_store) -> None:
    await _opened(editor, customers)

    results = await asyncio.gather(
        editor.create_todos_from_checklist(Stage.TEST_DRIVE),
        editor.create_todos_from_checklist(Stage.TEST_DRIVE),
    )

    outcomes = sorted(r.outcome for r in results)
    assert outcomes == sorted([GenerationOutcome.CREATED, GenerationOutcome.BUSY])
    assert todo_store.count_todos() == 4


@pytest.mark.asyncio
async def test_generation_uses_unsaved_buffer(editor, customers, todo_store) -> None:
    await _opened(editor, customers)
    editor.toggle_item(Stage.REGISTRATION, "insurance_accepted", True)

    result = await editor.create_todos_from_checklist(Stage.REGISTRATION)

    assert result.created == 3
    assert editor.has_changes is True
