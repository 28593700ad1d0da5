# src/dealer_crm/customers/customer_import.py

"""
Import customers from the legacy CRM JSON export, and write JSON backups.

Legacy records use camelCase keys (`salesConsultant`, `vsa_makeModel`, ...)
and sometimes camelCase stage keys (`testDrive`, `closeDeal`) inside the
checklist and milestone dates. Everything the workflow does not read ends up
in `details` under a snake_case key.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..core.errors import ValidationError
from ..core.resilience import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_ATTEMPTS,
    process_batch,
    with_retry,
)
from ..pipeline.milestones import ChecklistState, Stage, parse_date
from .customer_models import ArchiveStatus, Customer

if TYPE_CHECKING:
    from collections.abc import Callable

    from .customer_service import CustomerService

logger = logging.getLogger(__name__)

EXPORT_VERSION = "2.0"

_LEGACY_STAGE_KEYS = {
    "testDrive": Stage.TEST_DRIVE,
    "closeDeal": Stage.CLOSE_DEAL,
}

_NUMBER_FIELDS = {
    "vsa_sellingPriceList",
    "vsa_purchasePriceWithCOE",
    "vsa_deposit",
    "vsa_lessOthers",
    "vsa_addOthers",
    "vsa_tradeInAmount",
    "vsa_tradeInSettlementCost",
    "vsa_numberRetentionFee",
    "vsa_insuranceFee",
    "vsa_insuranceSubsidy",
    "vsa_loanAmount",
    "vsa_interest",
    "vsa_tenure",
    "vsa_adminFee",
    "vsa_monthlyRepayment",
    "proposal_sellingPrice",
    "proposal_interestRate",
    "proposal_downpayment",
    "proposal_loanTenure",
    "proposal_loanAmount",
    "proposal_adminFee",
    "proposal_referralFee",
    "proposal_lowLoanSurcharge",
    "proposal_noLoanSurcharge",
    "proposal_quotedTradeInPrice",
}

_DATE_FIELDS = {"vsa_deliveryDate"}

# Keys mapped onto Customer columns, or not carried over at all.
_CORE_FIELDS = {
    "id",
    "name",
    "phone",
    "email",
    "notes",
    "salesConsultant",
    "vsaNo",
    "dealClosed",
    "archiveStatus",
    "archivedAt",
    "checklist",
    "milestoneDates",
    "documentChecklist",
    "guarantors",
    "guarantor1",
    "guarantor2",
    "guarantor3",
    "guarantor4",
    "guarantor5",
}

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")
_NUMBER_JUNK_RE = re.compile(r"[$,\s]")


@dataclass(slots=True)
class ImportReport:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    customers: list[Customer] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not (self.failed and not self.imported)

    def summary(self) -> str:
        return f"imported={self.imported} skipped={self.skipped} failed={self.failed}"


def camel_to_snake(key: str) -> str:
    return _CAMEL_RE.sub(r"_\1", key).lower()


def parse_number(value: Any) -> float | None:
    """'$185,888' -> 185888.0; empty or unparseable -> None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(_NUMBER_JUNK_RE.sub("", str(value)))
    except ValueError:
        return None


def _parse_timestamp(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        dt = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _stage_keyed(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        stage = _LEGACY_STAGE_KEYS.get(key)
        out[stage.value if stage else key] = value
    return out


def load_legacy_file(path: str | Path) -> list[dict[str, Any]]:
    """Accepts a bare list of customers or the wrapped `{"customers": [...]}` export."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as e:
        raise ValidationError(f"Invalid JSON file: {path}") from e

    if isinstance(data, list):
        customers = data
    elif isinstance(data, dict) and isinstance(data.get("customers"), list):
        customers = data["customers"]
    else:
        raise ValidationError("Invalid customer data format")
    return [c for c in customers if isinstance(c, dict)]


def convert_legacy_customer(old: dict[str, Any]) -> dict[str, Any]:
    """Legacy record -> keyword arguments for CustomerRepo.add_customer (minus user_id)."""
    checklist_raw = _stage_keyed(old.get("checklist"))
    checklist = ChecklistState.from_record(checklist_raw) if checklist_raw else ChecklistState.default()

    archive_status = old.get("archiveStatus") or None
    if archive_status is not None:
        archive_status = ArchiveStatus.from_db(str(archive_status))

    details: dict[str, Any] = {}
    for key, value in old.items():
        if key in _CORE_FIELDS:
            continue
        if key in _NUMBER_FIELDS:
            value = parse_number(value)
        elif key in _DATE_FIELDS:
            d = parse_date(value)
            value = d.isoformat() if d else None
        elif value == "":
            value = None
        details[camel_to_snake(key)] = value

    return {
        "name": str(old.get("name") or "").strip() or "Unnamed Customer",
        "phone": old.get("phone") or None,
        "email": old.get("email") or None,
        "notes": old.get("notes") or None,
        "sales_consultant": old.get("salesConsultant") or None,
        "vsa_no": old.get("vsaNo") or None,
        "deal_closed": bool(old.get("dealClosed")),
        "archive_status": archive_status,
        "archived_at": _parse_timestamp(old.get("archivedAt")) if archive_status else None,
        "current_milestone": checklist.current_stage,
        "checklist": checklist,
        "milestone_dates": _stage_keyed(old.get("milestoneDates")),
        "details": details,
    }


def _should_retry(error: BaseException) -> bool:
    return not isinstance(error, ValidationError)


async def import_customers(
    service: CustomerService,
    records: list[dict[str, Any]],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    on_progress: Callable[[int, int], None] | None = None,
) -> ImportReport:
    """
    Create one customer per legacy record.

    Records without a name are skipped. Each insert is retried with backoff;
    a record that still fails is counted and its message kept in the report.
    """
    report = ImportReport()
    named = []
    for rec in records:
        if not str(rec.get("name") or "").strip():
            report.skipped += 1
            continue
        named.append(rec)

    async def create_one(rec: dict[str, Any]) -> Customer | str:
        label = str(rec.get("name")).strip()
        try:
            payload = convert_legacy_customer(rec)
            return await with_retry(
                lambda: service.create_customer(**payload),
                max_attempts=max_attempts,
                backoff_seconds=backoff_seconds,
                operation_name=f"importCustomer({label})",
                should_retry=_should_retry,
            )
        except Exception as e:
            logger.warning("Import of customer %r failed: %r", label, e)
            return f'Failed to import customer "{label}": {e}'

    results = await process_batch(
        named,
        create_one,
        concurrency=concurrency,
        delay_seconds=delay_seconds,
        on_progress=on_progress,
    )

    for res in results:
        if isinstance(res, Customer):
            report.imported += 1
            report.customers.append(res)
        else:
            report.failed += 1
            report.errors.append(res)

    logger.info("Customer import finished %s", report.summary())
    return report


async def import_customers_from_file(service: CustomerService, path: str | Path, **kwargs: Any) -> ImportReport:
    try:
        records = load_legacy_file(path)
    except (OSError, ValidationError) as e:
        logger.warning("Import file rejected path=%s: %r", path, e)
        return ImportReport(failed=1, errors=[str(e)])
    return await import_customers(service, records, **kwargs)


def export_customers(customers: list[Customer], path: str | Path) -> Path:
    """Write a JSON backup of `customers` and return the written path."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "version": EXPORT_VERSION,
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "type": "customers",
        "count": len(customers),
        "customers": [c.to_record() for c in customers],
    }
    out.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Exported %d customer(s) to %s", len(customers), out)
    return out
