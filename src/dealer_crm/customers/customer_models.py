# src/dealer_crm/customers/customer_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError
from ..pipeline.milestones import (
    ChecklistState,
    Stage,
    StageDates,
    default_stage_dates,
    stage_dates_from_record,
    stage_dates_to_record,
)


class ArchiveStatus(StrEnum):
    LOST = "lost"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> ArchiveStatus | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(slots=True)
class Customer:
    id: int
    user_id: str
    name: str
    created_at: float
    updated_at: float

    phone: str | None = None
    email: str | None = None
    notes: str | None = None
    sales_consultant: str | None = None
    vsa_no: str | None = None

    deal_closed: bool = False
    archive_status: ArchiveStatus | None = None
    archived_at: float | None = None

    current_milestone: Stage = Stage.TEST_DRIVE
    checklist: ChecklistState = field(default_factory=ChecklistState.default)
    milestone_dates: StageDates = field(default_factory=default_stage_dates)

    # Descriptive vehicle / sale / finance fields; the workflow never reads them.
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_archived(self) -> bool:
        return self.archive_status is not None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "notes": self.notes,
            "sales_consultant": self.sales_consultant,
            "vsa_no": self.vsa_no,
            "deal_closed": self.deal_closed,
            "archive_status": self.archive_status.value if self.archive_status else None,
            "archived_at": self.archived_at,
            "current_milestone": self.current_milestone.value,
            "checklist": self.checklist.to_record(),
            "milestone_dates": stage_dates_to_record(self.milestone_dates),
            "details": dict(self.details),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, rec: dict[str, Any]) -> Customer:
        try:
            current = Stage.parse(rec.get("current_milestone") or Stage.TEST_DRIVE)
        except ValidationError:
            current = Stage.TEST_DRIVE

        archived_at = rec.get("archived_at")
        details = rec.get("details")
        return cls(
            id=int(rec["id"]),
            user_id=str(rec.get("user_id") or ""),
            name=str(rec.get("name") or ""),
            created_at=float(rec.get("created_at") or 0.0),
            updated_at=float(rec.get("updated_at") or 0.0),
            phone=rec.get("phone"),
            email=rec.get("email"),
            notes=rec.get("notes"),
            sales_consultant=rec.get("sales_consultant"),
            vsa_no=rec.get("vsa_no"),
            deal_closed=bool(rec.get("deal_closed")),
            archive_status=ArchiveStatus.from_db(rec.get("archive_status")),
            archived_at=float(archived_at) if archived_at is not None else None,
            current_milestone=current,
            checklist=ChecklistState.from_record(rec.get("checklist")),
            milestone_dates=stage_dates_from_record(rec.get("milestone_dates")),
            details=dict(details) if isinstance(details, dict) else {},
        )
