# src/dealer_crm/realtime/sync.py

"""
Realtime reconciliation.

apply_change() folds one change event into a local list of records.
RealtimeSync owns the single channel of one collection and keeps it alive:
on CHANNEL_ERROR / TIMED_OUT it resubscribes after a fixed delay, forever.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from ..core.ports import ChangeFeed, RealtimeChannel
from .change_feed import ChangeEvent, ChangeKind, ChannelStatus

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SECONDS = 3.0


class _HasId(Protocol):
    id: Any


T = TypeVar("T", bound=_HasId)


def apply_change(records: list[T], event: ChangeEvent, parse: Callable[[dict[str, Any]], T]) -> list[T]:
    """
    Return a new list with `event` applied.

    - INSERT prepends the record (replaces in place if that id is already present)
    - UPDATE replaces the record with the same id, no-op if absent
    - DELETE removes the record with the same id, no-op if absent
    """
    if event.kind == ChangeKind.DELETE:
        rid = event.record_id
        if rid is None or not any(r.id == rid for r in records):
            return records
        return [r for r in records if r.id != rid]

    if event.new is None:
        return records
    rec = parse(event.new)

    if event.kind == ChangeKind.INSERT:
        if any(r.id == rec.id for r in records):
            return [rec if r.id == rec.id else r for r in records]
        return [rec, *records]

    if event.kind == ChangeKind.UPDATE:
        if not any(r.id == rec.id for r in records):
            return records
        return [rec if r.id == rec.id else r for r in records]

    return records


class RealtimeSync:
    """Keeps exactly one channel open for a table and reconnects it on failure."""

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        on_change: Callable[[ChangeEvent], None],
        *,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._feed = feed
        self._table = table
        self._on_change = on_change
        self._reconnect_delay = max(0.0, float(reconnect_delay_seconds))

        self._channel: RealtimeChannel | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._active = False
        self._generation = 0

        self.reconnects = 0
        self.last_status: ChannelStatus | None = None

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None

    def subscribe(self) -> Callable[[], None]:
        """Open the channel (closing any previous one first). Returns an unsubscribe callable."""
        self._cancel_reconnect()
        self._close_channel()

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

        self._active = True
        self._generation += 1
        gen = self._generation
        self._channel = self._feed.channel(
            self._table, self._on_change, lambda status: self._on_status(status, gen)
        )
        logger.info("Realtime subscribed table=%s", self._table)
        return self.unsubscribe

    def unsubscribe(self) -> None:
        self._active = False
        self._cancel_reconnect()
        self._close_channel()

    def _close_channel(self) -> None:
        ch = self._channel
        self._channel = None
        if ch is not None:
            ch.unsubscribe()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _on_status(self, status: ChannelStatus, generation: int) -> None:
        if generation != self._generation:
            return
        self.last_status = status
        logger.debug("Realtime channel status table=%s status=%s", self._table, status)

        if status not in (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT):
            return
        if not self._active:
            return

        # The failed channel is already dead on the feed side.
        self._channel = None

        if self._loop is None or self._loop.is_closed():
            logger.error("Realtime channel lost table=%s and no event loop to reconnect on", self._table)
            return

        if self._reconnect_handle is not None:
            return

        logger.warning(
            "Realtime channel %s table=%s, reconnecting in %ss", status, self._table, self._reconnect_delay
        )
        self._reconnect_handle = self._loop.call_later(self._reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if not self._active:
            return
        self.reconnects += 1
        try:
            self.subscribe()
        except Exception:
            logger.exception("Realtime resubscribe failed table=%s", self._table)
            self._on_status(ChannelStatus.CHANNEL_ERROR, self._generation)
