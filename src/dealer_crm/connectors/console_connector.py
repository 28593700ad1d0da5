# src/dealer_crm/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.ports import NotificationLevel
from ..core.state import AppState

logger = logging.getLogger(__name__)

_LEVEL_TAGS = {
    NotificationLevel.INFO: "",
    NotificationLevel.SUCCESS: "[OK] ",
    NotificationLevel.WARNING: "[WARN] ",
    NotificationLevel.ERROR: "[ERROR] ",
}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """Prints notifications as timestamped console lines."""

    def notify(self, message: str, *, level: NotificationLevel = NotificationLevel.INFO) -> None:
        _print_ts(f"{_LEVEL_TAGS.get(level, '')}{message}")


async def run_console_loop(state: AppState) -> None:
    """
    Read commands until /exit or EOF.

    input() runs in a worker thread so realtime updates keep flowing on the
    event loop while the prompt waits.
    """
    logger.info("Console connector started (user=%s).", getattr(state.settings, "user_id", "?"))
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "crm> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            _print_ts("Commands start with '/'. Use /help to list them.")
            continue

        try:
            response = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is not None:
            _print_ts(response)

    logger.info("Console connector finished.")
