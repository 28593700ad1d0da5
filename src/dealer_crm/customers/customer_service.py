# src/dealer_crm/customers/customer_service.py

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..core.errors import RemoteOperationError, ValidationError, handle_remote_error
from ..core.ports import ChangeFeed, CustomerRepo
from ..core.resilience import call_blocking
from ..pipeline.milestones import Stage, get_checklist_item
from ..realtime.change_feed import ChangeEvent
from ..realtime.sync import DEFAULT_RECONNECT_DELAY_SECONDS, RealtimeSync, apply_change
from .customer_models import ArchiveStatus, Customer
from .customer_store import TABLE

logger = logging.getLogger(__name__)


class CustomerService:
    """
    Client-side customer collection with a current selection.

    Same contract as the todo service: fetch errors are stored, write errors
    are stored and re-raised.
    """

    def __init__(
        self,
        repo: CustomerRepo,
        *,
        user_id: str,
        feed: ChangeFeed | None = None,
        timeout_seconds: float = 30.0,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._repo = repo
        self._user_id = user_id
        self._timeout = float(timeout_seconds)

        self.customers: list[Customer] = []
        self.selected_customer_id: int | None = None
        self.is_loading = False
        self.is_saving = False
        self.error: str | None = None

        self._sync: RealtimeSync | None = None
        if feed is not None:
            self._sync = RealtimeSync(
                feed, TABLE, self._on_change, reconnect_delay_seconds=reconnect_delay_seconds
            )

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await call_blocking(fn, *args, operation_name=operation, timeout_seconds=self._timeout)
        except Exception as e:
            handle_remote_error(e, operation)

    async def _write(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        self.is_saving = True
        self.error = None
        try:
            return await self._call(operation, fn, *args)
        except Exception as e:
            self.error = str(e)
            raise
        finally:
            self.is_saving = False

    # ---- CRUD ----

    async def fetch_customers(self) -> None:
        self.is_loading = True
        self.error = None
        try:
            self.customers = await self._call("fetchCustomers", self._repo.list_customers)
        except Exception as e:
            self.error = str(e)
        finally:
            self.is_loading = False

    async def fetch_customer_by_id(self, customer_id: int) -> Customer | None:
        """Re-read one record from the backend and refresh the local copy."""
        try:
            customer = await self._call("fetchCustomerById", self._repo.get_customer, customer_id)
        except Exception as e:
            self.error = str(e)
            return None
        if customer is not None:
            self._upsert_local(customer)
        return customer

    async def create_customer(self, name: str, **fields: Any) -> Customer:
        if not name or not name.strip():
            self.error = "Customer name is required"
            raise ValidationError(self.error)

        def insert() -> Customer:
            return self._repo.add_customer(user_id=self._user_id, name=name, **fields)

        customer: Customer = await self._write("createCustomer", insert)
        self._upsert_local(customer, prepend=True)
        logger.info("Customer created id=%s name=%s", customer.id, customer.name)
        return customer

    async def update_customer(self, customer_id: int, updates: dict[str, Any]) -> Customer:
        """Persist `updates` and replace the local record with the stored one."""

        def update() -> Customer:
            customer = self._repo.update_customer(customer_id, updates)
            if customer is None:
                raise RemoteOperationError(f"Customer {customer_id} not found", operation="updateCustomer")
            return customer

        customer: Customer = await self._write("updateCustomer", update)
        self._upsert_local(customer)
        return customer

    async def delete_customer(self, customer_id: int) -> None:
        await self._write("deleteCustomer", self._repo.delete_customer, customer_id)
        self.customers = [c for c in self.customers if c.id != customer_id]
        if self.selected_customer_id == customer_id:
            self.selected_customer_id = None

    # ---- selection ----

    def get(self, customer_id: int) -> Customer | None:
        return next((c for c in self.customers if c.id == customer_id), None)

    def select_customer(self, customer_id: int | None) -> Customer | None:
        self.selected_customer_id = customer_id
        return self.selected_customer

    @property
    def selected_customer(self) -> Customer | None:
        if self.selected_customer_id is None:
            return None
        return self.get(self.selected_customer_id)

    # ---- workflow shortcuts ----

    async def update_checklist_item(
        self, customer_id: int, stage: Stage | str, item_id: str, checked: bool
    ) -> Customer | None:
        """Flip one checklist flag and persist it immediately (no edit buffer)."""
        customer = self.get(customer_id)
        if customer is None:
            return None
        get_checklist_item(stage, item_id)
        checklist = customer.checklist.with_item(stage, item_id, checked)
        return await self.update_customer(customer_id, {"checklist": checklist})

    async def set_current_milestone(self, customer_id: int, stage: Stage | str) -> Customer | None:
        customer = self.get(customer_id)
        if customer is None:
            return None
        st = Stage.parse(stage)
        return await self.update_customer(
            customer_id,
            {"current_milestone": st, "checklist": customer.checklist.with_current_stage(st)},
        )

    async def archive_customer(self, customer_id: int, status: ArchiveStatus | str) -> Customer:
        st = ArchiveStatus(status)
        return await self.update_customer(
            customer_id, {"archive_status": st, "archived_at": time.time()}
        )

    async def unarchive_customer(self, customer_id: int) -> Customer:
        return await self.update_customer(customer_id, {"archive_status": None, "archived_at": None})

    def active_customers(self) -> list[Customer]:
        return [c for c in self.customers if not c.is_archived]

    def archived_customers(self) -> list[Customer]:
        return [c for c in self.customers if c.is_archived]

    def clear_error(self) -> None:
        self.error = None

    def _upsert_local(self, customer: Customer, *, prepend: bool = False) -> None:
        if any(c.id == customer.id for c in self.customers):
            self.customers = [customer if c.id == customer.id else c for c in self.customers]
        elif prepend:
            self.customers = [customer, *self.customers]

    # ---- realtime ----

    def subscribe_to_changes(self) -> Callable[[], None]:
        if self._sync is None:
            raise RuntimeError("CustomerService has no change feed attached")
        return self._sync.subscribe()

    def unsubscribe(self) -> None:
        if self._sync is not None:
            self._sync.unsubscribe()

    @property
    def realtime(self) -> RealtimeSync | None:
        return self._sync

    def _on_change(self, event: ChangeEvent) -> None:
        self.customers = apply_change(self.customers, event, Customer.from_record)
        if (
            self.selected_customer_id is not None
            and self.get(self.selected_customer_id) is None
        ):
            self.selected_customer_id = None
