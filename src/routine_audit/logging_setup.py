# src/routine_audit/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "audit.log"

# Loggers that fire from change-notification refetches and routine inserts,
# i.e. while the user is typing at the prompt.
_BACKGROUND_PREFIXES = (
    "routine_audit.storage.",
    "routine_audit.boards.",
    "routine_audit.assignments.materializer",
)


class _PromptFilter(logging.Filter):
    """
    Keeps the command prompt readable.

    Command handlers and the session log at their own level. Refetch and
    materializer logs reach the console only as warnings, since they interleave
    with whatever the user is typing. Everything else (bcrypt, dotenv, captured
    ``warnings.warn`` calls) shows up only on errors. The log file still gets it all.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith("routine_audit."):
            return record.levelno >= logging.ERROR
        if name.startswith(_BACKGROUND_PREFIXES):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/routine_audit",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Send audit logs to stderr (filtered) and to ``<log_dir>/audit.log`` (unfiltered).

    Replaces any handlers already on the root logger so lines are not
    duplicated. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_PromptFilter())
    root.addHandler(console)

    audit_file = logging.FileHandler(str(log_file), encoding="utf-8")
    audit_file.setLevel(file_level)
    audit_file.setFormatter(fmt)
    root.addHandler(audit_file)

    logging.captureWarnings(True)
    return log_file
