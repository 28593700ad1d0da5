# src/dealer_crm/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Minimum console level by logger-name prefix; first match wins.
_CONSOLE_LEVELS: tuple[tuple[str, int], ...] = (
    # subscribe/status lines repeat on every reconnect
    ("dealer_crm.realtime.", logging.WARNING),
    # one line per record, floods the prompt during /import
    ("dealer_crm.customers.customer_service", logging.WARNING),
    ("dealer_crm.todos.todo_service", logging.WARNING),
    ("dealer_crm.", logging.INFO),
    ("dotenv", logging.WARNING),
    ("py.warnings", logging.ERROR),
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the crm> prompt readable.

    Per-record service logs and realtime churn still reach the log file;
    the console only shows them once they turn into warnings.
    Anything not listed in _CONSOLE_LEVELS needs ERROR+.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        for prefix, level in _CONSOLE_LEVELS:
            if name == prefix.rstrip(".") or name.startswith(prefix):
                return record.levelno >= level
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/dealer_crm",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) on stderr plus a full crm.log in `log_dir`.

    Call once, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "crm.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
