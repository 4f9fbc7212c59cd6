"""Logging for the trade journal.

All handlers hang off the ``trade_journal`` logger. Components log through
children created with ``get_logger("Recalc")`` and every line carries the
component tag, so call sites never spell out their own prefix.

Each process start writes a fresh ``trade_journal_<timestamp>.log`` and
``trade_journal.log`` mirrors the current run. Older run files beyond the
most recent ten are removed.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from tradejournal.config import settings

ROOT_NAME = "trade_journal"
_KEEP_RUNS = 10

_FORMAT = "[%(asctime)s] %(levelname)-8s [%(component)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ComponentFilter(logging.Filter):
    """Tags each record with the component part of its logger name."""

    def filter(self, record: logging.LogRecord) -> bool:
        prefix = f"{ROOT_NAME}."
        if record.name.startswith(prefix):
            record.component = record.name[len(prefix):]
        else:
            record.component = "Journal"
        return True


def _prune_runs(logs_dir: Path) -> None:
    runs = sorted(
        logs_dir.glob(f"{ROOT_NAME}_*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for stale in runs[_KEEP_RUNS:]:
        try:
            stale.unlink()
        except OSError:
            continue  # Still open elsewhere; next start retries


def _handlers(logs_dir: Path) -> tuple[list[logging.Handler], Path]:
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    handlers: list[logging.Handler] = [console]

    run_log = logs_dir / f"{ROOT_NAME}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
    run_file = logging.FileHandler(run_log, encoding="utf-8")
    run_file.setLevel(logging.DEBUG)
    handlers.append(run_file)

    try:
        current = logging.FileHandler(logs_dir / f"{ROOT_NAME}.log", mode="w", encoding="utf-8")
    except OSError:
        current = None  # The run file has everything anyway
    if current is not None:
        current.setLevel(logging.DEBUG)
        handlers.append(current)
    return handlers, run_log


def configure_logging(logs_dir: Path | None = None) -> logging.Logger:
    """Attach the console and run-file handlers to the journal logger once."""
    root = logging.getLogger(ROOT_NAME)
    if root.handlers:
        return root
    root.setLevel(logging.DEBUG)

    logs_dir = logs_dir or settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)
    tagger = ComponentFilter()
    handlers, run_log = _handlers(logs_dir)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(tagger)
        root.addHandler(handler)

    _prune_runs(logs_dir)
    root.info("Log started: %s", run_log.name)
    return root


def get_logger(component: str) -> logging.Logger:
    """Logger whose lines are tagged ``[component]``."""
    configure_logging()
    return logging.getLogger(f"{ROOT_NAME}.{component}")


logger = configure_logging()
