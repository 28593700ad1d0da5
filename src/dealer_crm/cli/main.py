# src/dealer_crm/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads both collections, subscribes them
to the change feed, then runs the console REPL (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, start_sync, stop_sync
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    await start_sync(state)
    if state.customers.error or state.todos.error:
        logger.warning(
            "Initial load incomplete: customers=%s todos=%s", state.customers.error, state.todos.error
        )

    try:
        if state.settings.console_enabled:
            await run_console_loop(state)
        else:
            stop_main = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                # Some platforms do not support loop signal handlers.
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.add_signal_handler(sig, stop_main.set)
            logger.info("Console disabled. Keeping realtime sync alive. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        stop_sync(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (full log: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, notifier=ConsoleNotifier())

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
