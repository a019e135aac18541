"""
core/logging_config.py - Logging Configuration

Two channels:
  - Console (stderr): the configured level and above, coloured on a TTY.
    stdout is reserved for the reconciliation report.
  - DEBUG log (optional file): everything (DEBUG+), rotated, for
    post-mortem investigation of a run.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

class MainFormatter(logging.Formatter):
    """
    Clean, human-readable single-line format for the console.
    Adds ANSI colour when writing to a real TTY.
    """
    _COLORS = {
        logging.DEBUG:    "\033[36m",   # cyan
        logging.INFO:     "\033[32m",   # green
        logging.WARNING:  "\033[33m",   # yellow
        logging.ERROR:    "\033[31m",   # red
        logging.CRITICAL: "\033[35m",   # magenta
    }
    _RESET = "\033[0m"

    def __init__(self, use_color: bool = False):
        super().__init__()
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname[:4]  # WARN, INFO, ERRO, CRIT, DEBU
        if self._use_color:
            c = self._COLORS.get(record.levelno, "")
            level_str = f"{c}{level}{self._RESET}"
        else:
            level_str = level

        line = f"{ts} {level_str} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class DebugFormatter(logging.Formatter):
    """Verbose format for the debug log: millisecond timestamp, module and line."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        line = (
            f"{ts} {record.levelname:8} "
            f"{record.name}:{record.lineno} - {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def setup_logging(
    level: str = "INFO",
    debug_log_file: Optional[str] = None,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure logging for a reconciliation run.

    Parameters
    ----------
    level          : Console level name (DEBUG, INFO, WARNING, ...).
    debug_log_file : Optional path for the verbose rotating debug log.
    console_output : Attach the stderr console handler.
    """
    console_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug_log_file else console_level)
    root.handlers.clear()

    if debug_log_file:
        Path(debug_log_file).parent.mkdir(parents=True, exist_ok=True)
        debug_handler = logging.handlers.RotatingFileHandler(
            debug_log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        debug_handler.setLevel(logging.DEBUG)
        debug_handler.setFormatter(DebugFormatter())
        root.addHandler(debug_handler)

    if console_output:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(console_level)
        is_tty = hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
        console.setFormatter(MainFormatter(use_color=is_tty))
        root.addHandler(console)

    # Every SQL statement and HTTP request is DEBUG; too noisy even for the debug log
    for noisy in (
        "httpx",
        "httpcore",
        "httpcore.http11",
        "httpcore.connection",
        "asyncio",
        "aiosqlite",
        "asyncpg",
        "sqlalchemy.engine",
        "sqlalchemy.pool",
    ):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root
