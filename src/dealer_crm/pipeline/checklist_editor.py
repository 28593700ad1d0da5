# src/dealer_crm/pipeline/checklist_editor.py

"""
Checklist edit buffer for one customer.

Toggles, stage changes and stage dates accumulate locally; save() writes them
as one customer update, cancel() drops them. The same buffer drives bulk task
generation for a stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import TYPE_CHECKING

from ..core.errors import ValidationError, friendly_error_message
from ..core.ports import NotificationLevel, Notifier
from ..todos.todo_models import Priority
from .milestones import (
    CHECKLISTS,
    ChecklistState,
    Stage,
    StageDates,
    default_stage_dates,
    get_checklist_item,
    get_milestone,
    parse_date,
    stage_progress,
    todo_text_for,
)

if TYPE_CHECKING:
    from ..customers.customer_models import Customer
    from ..customers.customer_service import CustomerService
    from ..todos.todo_service import TodoService

logger = logging.getLogger(__name__)


class GenerationOutcome(StrEnum):
    CREATED = "created"
    ALREADY_COMPLETE = "already_complete"
    ALREADY_EXIST = "already_exist"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(slots=True)
class GenerationResult:
    outcome: GenerationOutcome
    stage: Stage
    created: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome != GenerationOutcome.FAILED

    @property
    def message(self) -> str:
        name = get_milestone(self.stage).name
        if self.outcome == GenerationOutcome.CREATED:
            noun = "task" if self.created == 1 else "tasks"
            return f"Created {self.created} {noun} for {name}"
        if self.outcome == GenerationOutcome.ALREADY_COMPLETE:
            return f"All {name} items are already complete"
        if self.outcome == GenerationOutcome.ALREADY_EXIST:
            return f"Tasks for {name} already exist"
        if self.outcome == GenerationOutcome.BUSY:
            return "Task generation already in progress"
        return f"Failed to create tasks for {name} ({self.created} created): {self.error}"


class ChecklistEditor:
    def __init__(
        self,
        customers: CustomerService,
        todos: TodoService,
        notifier: Notifier | None = None,
        customer: Customer | None = None,
    ) -> None:
        self._customers = customers
        self._todos = todos
        self._notifier = notifier

        self.customer: Customer | None = None
        self.checklist = ChecklistState.default()
        self.stage_dates: StageDates = default_stage_dates()
        self.has_changes = False
        self.is_saving = False
        self.is_generating = False
        self.error: str | None = None

        if customer is not None:
            self.load_customer(customer)

    def _notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        if self._notifier is not None:
            self._notifier.notify(message, level=level)

    def _require_customer(self) -> Customer:
        if self.customer is None:
            raise ValidationError("No customer loaded in the checklist editor")
        return self.customer

    def _persisted(self) -> Customer | None:
        """Latest known stored copy of the loaded customer (the snapshot if it left the collection)."""
        if self.customer is None:
            return None
        return self._customers.get(self.customer.id) or self.customer

    def _reset_from(self, customer: Customer | None) -> None:
        if customer is None:
            self.checklist = ChecklistState.default()
            self.stage_dates = default_stage_dates()
        else:
            self.checklist = customer.checklist.with_current_stage(customer.current_milestone)
            self.stage_dates = dict(customer.milestone_dates)
        self.has_changes = False
        self.error = None

    # ---- buffer ----

    def load_customer(self, customer: Customer | None) -> None:
        """Switch to another customer; pending edits of the previous one are dropped."""
        self.customer = customer
        self._reset_from(customer)

    @property
    def current_stage(self) -> Stage:
        return self.checklist.current_stage

    def refresh(self) -> None:
        """Pick up persisted changes made elsewhere; no-op while edits are pending."""
        if self.customer is None or self.has_changes:
            return
        self.customer = self._persisted()
        self._reset_from(self.customer)

    def toggle_item(self, stage: Stage | str, item_id: str, checked: bool) -> None:
        self._require_customer()
        item = get_checklist_item(stage, item_id)
        self.checklist = self.checklist.with_item(stage, item.id, checked)
        self.has_changes = True

    def set_current_stage(self, stage: Stage | str) -> None:
        self._require_customer()
        self.checklist = self.checklist.with_current_stage(stage)
        self.has_changes = True

    def set_stage_date(self, stage: Stage | str, value: date | str | None) -> None:
        self._require_customer()
        st = Stage.parse(stage)
        dates = dict(self.stage_dates)
        dates[st] = parse_date(value)
        self.stage_dates = dates
        self.has_changes = True

    async def save(self) -> bool:
        """
        Persist checklist, stage dates and current stage in one update.

        Returns False when there was nothing to save. On failure the buffer and
        has_changes are kept so the user can retry; the error is re-raised.
        """
        if not self.has_changes:
            return False
        customer = self._require_customer()

        self.is_saving = True
        self.error = None
        try:
            saved = await self._customers.update_customer(
                customer.id,
                {
                    "checklist": self.checklist,
                    "milestone_dates": self.stage_dates,
                    "current_milestone": self.checklist.current_stage,
                },
            )
        except Exception as e:
            self.error = friendly_error_message(e)
            logger.warning("Checklist save failed customer_id=%s: %r", customer.id, e)
            self._notify(f"Failed to save checklist: {self.error}", NotificationLevel.ERROR)
            raise
        finally:
            self.is_saving = False

        # Later cancel() resets to what we just wrote.
        self.customer = saved
        self.has_changes = False
        self._notify("Checklist saved", NotificationLevel.SUCCESS)
        return True

    def cancel(self) -> None:
        """Drop pending edits and reload from the latest persisted record."""
        self.customer = self._persisted()
        self._reset_from(self.customer)

    def stage_progress(self, stage: Stage | str) -> int:
        return stage_progress(stage, self.checklist)

    # ---- task generation ----

    async def create_todos_from_checklist(self, stage: Stage | str) -> GenerationResult:
        """
        Create one open task per unchecked item of `stage`.

        Items that already have an open task with the same text are skipped.
        Creation is sequential and stops at the first failure; tasks created
        before it are kept.
        """
        st = Stage.parse(stage)
        if self.is_generating:
            return GenerationResult(GenerationOutcome.BUSY, st)
        self.refresh()
        customer = self._require_customer()

        self.is_generating = True
        try:
            result = await self._generate(customer, st)
        finally:
            self.is_generating = False

        level = {
            GenerationOutcome.CREATED: NotificationLevel.SUCCESS,
            GenerationOutcome.FAILED: NotificationLevel.ERROR,
        }.get(result.outcome, NotificationLevel.INFO)
        self._notify(result.message, level)
        return result

    async def _generate(self, customer: Customer, stage: Stage) -> GenerationResult:
        pending = [item for item in CHECKLISTS[stage] if not self.checklist.is_checked(stage, item.id)]
        if not pending:
            return GenerationResult(GenerationOutcome.ALREADY_COMPLETE, stage)

        try:
            open_todos = await self._todos.fetch_open_todos(customer.id, stage.value)
        except Exception as e:
            logger.warning("Open task lookup failed customer_id=%s stage=%s: %r", customer.id, stage, e)
            return GenerationResult(GenerationOutcome.FAILED, stage, error=friendly_error_message(e))

        existing = {t.text for t in open_todos}
        to_create = [item for item in pending if todo_text_for(stage, item) not in existing]
        if not to_create:
            return GenerationResult(GenerationOutcome.ALREADY_EXIST, stage)

        due = self.stage_dates.get(stage)
        priority = Priority.HIGH if due is not None else Priority.MEDIUM

        created = 0
        for item in to_create:
            try:
                await self._todos.create_todo(
                    todo_text_for(stage, item),
                    priority=priority,
                    due_date=due,
                    customer_id=customer.id,
                    customer_name=customer.name,
                    milestone_id=stage.value,
                    checklist_item_id=item.id,
                )
            except Exception as e:
                logger.warning(
                    "Task generation aborted customer_id=%s stage=%s after %d: %r",
                    customer.id,
                    stage,
                    created,
                    e,
                )
                return GenerationResult(
                    GenerationOutcome.FAILED, stage, created=created, error=friendly_error_message(e)
                )
            created += 1

        logger.info("Generated %d task(s) customer_id=%s stage=%s", created, customer.id, stage)
        return GenerationResult(GenerationOutcome.CREATED, stage, created=created)
