# src/dealer_crm/pipeline/milestones.py

"""
Sales pipeline stages and their fixed checklists.

The checklist catalog is hardcoded: every customer walks the same five stages
(test drive -> COE bidding -> registration -> delivery -> NPS survey).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError

CURRENT_STAGE_KEY = "currentMilestone"


class Stage(StrEnum):
    TEST_DRIVE = "test_drive"
    CLOSE_DEAL = "close_deal"
    REGISTRATION = "registration"
    DELIVERY = "delivery"
    NPS = "nps"

    @classmethod
    def parse(cls, raw: Any) -> Stage:
        if isinstance(raw, Stage):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown stage: {raw!r}") from None


class Urgency(StrEnum):
    OVERDUE = "overdue"
    URGENT = "urgent"
    SOON = "soon"
    UPCOMING = "upcoming"


@dataclass(frozen=True, slots=True)
class Milestone:
    id: Stage
    name: str
    short_name: str
    color: str


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    id: str
    label: str


MILESTONES: tuple[Milestone, ...] = (
    Milestone(Stage.TEST_DRIVE, "Test Drive", "TD", "#64748b"),
    Milestone(Stage.CLOSE_DEAL, "COE Bidding", "COE", "#0891b2"),
    Milestone(Stage.REGISTRATION, "Registration", "REG", "#6366f1"),
    Milestone(Stage.DELIVERY, "Delivery", "DEL", "#059669"),
    Milestone(Stage.NPS, "NPS", "NPS", "#d97706"),
)

CHECKLISTS: dict[Stage, tuple[ChecklistItem, ...]] = {
    Stage.TEST_DRIVE: (
        ChecklistItem("customer_details_filled", "Customer Details Filled"),
        ChecklistItem("id_scanned", "ID Scanned"),
        ChecklistItem("test_drive_form", "Test Drive Form"),
        ChecklistItem("input_byd_crm_td", "Input BYD CRM"),
    ),
    Stage.CLOSE_DEAL: (
        ChecklistItem("vsa_details_filled", "VSA Details Filled"),
        ChecklistItem("vsa_pdpa_coe_forms", "VSA Form, PDPA Form & COE Bidding Form"),
        ChecklistItem("input_byd_crm_cd", "Input BYD CRM"),
        ChecklistItem("submit_insurance_quotation", "Submit Insurance Quotation"),
        ChecklistItem("loan_approved", "Loan Approved"),
    ),
    Stage.REGISTRATION: (
        ChecklistItem("insurance_details_filled", "Insurance Details Filled"),
        ChecklistItem("insurance_accepted", "Insurance Accepted"),
        ChecklistItem("performa_invoice_balance_payment", "Prepare Performa Invoice for Balance Payment"),
        ChecklistItem("balance_payment_secured", "Balance Payment Secured, Input BYD CRM"),
    ),
    Stage.DELIVERY: (
        ChecklistItem("delivery_details_filled", "Delivery Details Filled"),
        ChecklistItem(
            "delivery_checklist_form",
            "Delivery Checklist Form, Declaration of Insurance Cancellation Form",
        ),
        ChecklistItem("input_byd_crm_dlink", "Input BYD CRM (DLink)"),
        ChecklistItem("insurance_forms_printed", "Insurance Forms Printed"),
        ChecklistItem("performa_invoice_copy", "Copy of Performa Invoice for Customer"),
        ChecklistItem("remaining_delivery_items", "Any Remaining Delivery items or gifts to be prepared"),
    ),
    Stage.NPS: (
        ChecklistItem("nps_survey_sent", "NPS Survey Sent"),
        ChecklistItem("nps_response_received", "NPS Response Received"),
    ),
}

_MILESTONES_BY_ID = {m.id: m for m in MILESTONES}
_STAGE_ORDER = [m.id for m in MILESTONES]


def get_milestone(stage: Stage | str) -> Milestone:
    return _MILESTONES_BY_ID[Stage.parse(stage)]


def milestone_index(stage: Stage | str) -> int:
    return _STAGE_ORDER.index(Stage.parse(stage))


def next_stage(stage: Stage | str) -> Stage | None:
    idx = milestone_index(stage) + 1
    return _STAGE_ORDER[idx] if idx < len(_STAGE_ORDER) else None


def get_checklist_item(stage: Stage | str, item_id: str) -> ChecklistItem:
    st = Stage.parse(stage)
    for item in CHECKLISTS[st]:
        if item.id == item_id:
            return item
    raise ValidationError(f"Unknown checklist item {item_id!r} for stage {st.value}")


def todo_text_for(stage: Stage | str, item: ChecklistItem) -> str:
    """Text of a task generated from a checklist item (also its de-duplication key)."""
    return f"{get_milestone(stage).name}: {item.label}"


@dataclass(slots=True)
class ChecklistState:
    """
    Per-customer completion flags.

    Treated as an immutable value: with_* methods return copies so a buffered
    edit never leaks into the persisted record it was copied from.
    """

    current_stage: Stage = Stage.TEST_DRIVE
    items: dict[Stage, dict[str, bool]] = field(default_factory=lambda: {s: {} for s in Stage})

    @classmethod
    def default(cls) -> ChecklistState:
        return cls(
            current_stage=Stage.TEST_DRIVE,
            items={stage: {item.id: False for item in CHECKLISTS[stage]} for stage in Stage},
        )

    def is_checked(self, stage: Stage | str, item_id: str) -> bool:
        return bool(self.items.get(Stage.parse(stage), {}).get(item_id, False))

    def copy(self) -> ChecklistState:
        return ChecklistState(
            current_stage=self.current_stage,
            items={stage: dict(flags) for stage, flags in self.items.items()},
        )

    def with_item(self, stage: Stage | str, item_id: str, checked: bool) -> ChecklistState:
        out = self.copy()
        out.items.setdefault(Stage.parse(stage), {})[item_id] = bool(checked)
        return out

    def with_current_stage(self, stage: Stage | str) -> ChecklistState:
        out = self.copy()
        out.current_stage = Stage.parse(stage)
        return out

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {CURRENT_STAGE_KEY: self.current_stage.value}
        for stage in Stage:
            record[stage.value] = dict(self.items.get(stage, {}))
        return record

    @classmethod
    def from_record(cls, raw: Any) -> ChecklistState:
        if not isinstance(raw, dict):
            return cls.default()

        try:
            current = Stage.parse(raw.get(CURRENT_STAGE_KEY) or Stage.TEST_DRIVE)
        except ValidationError:
            current = Stage.TEST_DRIVE

        items: dict[Stage, dict[str, bool]] = {}
        for stage in Stage:
            flags = raw.get(stage.value)
            items[stage] = (
                {str(k): bool(v) for k, v in flags.items()} if isinstance(flags, dict) else {}
            )
        return cls(current_stage=current, items=items)


StageDates = dict[Stage, date | None]


def default_stage_dates() -> StageDates:
    return {stage: None for stage in Stage}


def parse_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None


def stage_dates_to_record(dates: dict[Any, Any]) -> dict[str, str | None]:
    """Accepts Stage or plain string keys; values may be dates or ISO strings."""
    out: dict[str, str | None] = {}
    for stage in Stage:
        d = parse_date(dates.get(stage))
        out[stage.value] = d.isoformat() if d else None
    return out


def stage_dates_from_record(raw: Any) -> StageDates:
    dates = default_stage_dates()
    if not isinstance(raw, dict):
        return dates
    for stage in Stage:
        dates[stage] = parse_date(raw.get(stage.value))
    return dates


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def stage_progress(stage: Stage | str, state: ChecklistState | None) -> int:
    """Completion percentage of one stage, rounded to the nearest integer."""
    if state is None:
        return 0
    st = Stage.parse(stage)
    items = CHECKLISTS[st]
    if not items:
        return 0
    done = sum(1 for item in items if state.is_checked(st, item.id))
    return _round_half_up(done / len(items) * 100)


def is_stage_complete(stage: Stage | str, state: ChecklistState | None) -> bool:
    return stage_progress(stage, state) == 100


def overall_progress(state: ChecklistState | None) -> int:
    if state is None:
        return 0
    total = 0
    done = 0
    for stage in Stage:
        for item in CHECKLISTS[stage]:
            total += 1
            if state.is_checked(stage, item.id):
                done += 1
    return _round_half_up(done / total * 100) if total else 0


def days_until(target: date | None, today: date | None = None) -> int | None:
    if target is None:
        return None
    today = today or date.today()
    return (target - today).days


def stage_urgency(target: date | None, today: date | None = None) -> Urgency | None:
    days = days_until(target, today)
    if days is None:
        return None
    if days < 0:
        return Urgency.OVERDUE
    if days <= 3:
        return Urgency.URGENT
    if days <= 7:
        return Urgency.SOON
    return Urgency.UPCOMING
