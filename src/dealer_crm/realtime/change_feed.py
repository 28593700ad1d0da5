# src/dealer_crm/realtime/change_feed.py

"""
In-process change feed.

Stores publish a ChangeEvent after every write; subscribers open a channel per
table and receive events in publish order. Delivery is marshalled onto the event
loop the channel was opened on, so callbacks never run on a store worker thread.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(StrEnum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    kind: ChangeKind
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def record_id(self) -> Any:
        rec = self.old if self.kind == ChangeKind.DELETE else self.new
        return (rec or {}).get("id")


EventCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[ChannelStatus], None]


class LocalChannel:
    def __init__(
        self,
        feed: LocalChangeFeed,
        name: str,
        table: str,
        on_event: EventCallback,
        on_status: StatusCallback | None,
        loop: asyncio.AbstractEventLoop | None,
    ) -> None:
        self.name = name
        self.table = table
        self._feed = feed
        self._on_event = on_event
        self._on_status = on_status
        self._loop = loop
        self.open = True

    def unsubscribe(self) -> None:
        if not self.open:
            return
        self.open = False
        self._feed._detach(self)
        logger.debug("Channel %s unsubscribed", self.name)

    def _call(self, fn: Callable[[], None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            fn()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn()
        else:
            loop.call_soon_threadsafe(fn)

    def _deliver(self, event: ChangeEvent) -> None:
        def run() -> None:
            # Channel may have been closed between publish and delivery.
            if not self.open:
                return
            try:
                self._on_event(event)
            except Exception:
                logger.exception("Channel %s event handler failed kind=%s", self.name, event.kind)

        self._call(run)

    def _status(self, status: ChannelStatus) -> None:
        if self._on_status is None:
            return
        on_status = self._on_status

        def run() -> None:
            try:
                on_status(status)
            except Exception:
                logger.exception("Channel %s status handler failed status=%s", self.name, status)

        self._call(run)


class LocalChangeFeed:
    """Change feed backed by in-memory channel registrations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: list[LocalChannel] = []
        self._seq = itertools.count(1)

    def channel(
        self,
        table: str,
        on_event: EventCallback,
        on_status: StatusCallback | None = None,
        *,
        name: str | None = None,
    ) -> LocalChannel:
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        ch = LocalChannel(
            self,
            name or f"{table}_changes#{next(self._seq)}",
            table,
            on_event,
            on_status,
            loop,
        )
        with self._lock:
            self._channels.append(ch)
        logger.debug("Channel %s subscribed table=%s", ch.name, table)
        ch._status(ChannelStatus.SUBSCRIBED)
        return ch

    def _detach(self, ch: LocalChannel) -> None:
        with self._lock:
            if ch in self._channels:
                self._channels.remove(ch)
        ch._status(ChannelStatus.CLOSED)

    def open_channels(self, table: str | None = None) -> list[LocalChannel]:
        with self._lock:
            return [c for c in self._channels if table is None or c.table == table]

    def publish(self, event: ChangeEvent) -> None:
        for ch in self.open_channels(event.table):
            ch._deliver(event)

    def fail_channels(self, table: str, status: ChannelStatus = ChannelStatus.CHANNEL_ERROR) -> int:
        """Drop every open channel of `table` with an error status (connection loss)."""
        dropped = self.open_channels(table)
        with self._lock:
            for ch in dropped:
                if ch in self._channels:
                    self._channels.remove(ch)
        for ch in dropped:
            ch.open = False
            ch._status(status)
        if dropped:
            logger.warning("Dropped %d channel(s) table=%s status=%s", len(dropped), table, status)
        return len(dropped)
