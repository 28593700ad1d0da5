# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from dealer_crm.logging_setup import _ConsoleNoiseFilter


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("dealer_crm.pipeline.checklist_editor", logging.INFO, True),
        ("dealer_crm.cli.bootstrap", logging.INFO, True),
        ("dealer_crm.realtime.sync", logging.INFO, False),
        ("dealer_crm.realtime.sync", logging.WARNING, True),
        ("dealer_crm.customers.customer_service", logging.INFO, False),
        ("dealer_crm.customers.customer_service", logging.WARNING, True),
        ("dealer_crm.customers.customer_store", logging.INFO, True),
        ("dealer_crm.todos.todo_service", logging.INFO, False),
        ("dotenv.main", logging.WARNING, True),
        ("dotenv.main", logging.INFO, False),
        ("py.warnings", logging.WARNING, False),
        ("asyncio", logging.WARNING, False),
        ("asyncio", logging.ERROR, True),
    ],
)
def test_console_filter_levels(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown
