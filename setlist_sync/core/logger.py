"""
Logging configuration for setlist-sync.

This module sets up the logging system with multiple outputs:
    - Console: Colored, tqdm-compatible output
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - unconfirmed_writes.log: Writes the remote accepted but that never
      became visible before confirmation attempts ran out

File outputs are only created when a log directory is given.

Usage:
    from setlist_sync.core.logger import setup_logging, get_logger

    setup_logging("INFO", log_dir)  # Call once at startup
    logger = get_logger(__name__)   # Get logger for each module

    logger.info("Fetching songs")
    log_unconfirmed_write("song", "42", "Wonderwall - Oasis", attempts=6)
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log file names (created in the log directory, suffixed with a timestamp)
LOG_FULL_FILENAME = "log_full"
LOG_ERRORS_FILENAME = "log_errors"
UNCONFIRMED_WRITES_FILENAME = "unconfirmed_writes"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries whose chatter stays out of the console
QUIET_LOGGERS = ("aiohttp", "aiohttp.access", "aiohttp.client", "asyncio")


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes through tqdm.write().

    The seed command shows a progress bar while it creates records; plain
    writes to stderr would tear the bar apart. tqdm.write() prints above
    any active bar instead.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream or sys.stderr)
        except Exception:
            self.handleError(record)


class UnconfirmedWriteHandler(logging.Handler):
    """
    Handler that captures exhausted confirmations for the report file.

    Writes one block per unconfirmed write in a human-readable format:

        song 42: Wonderwall - Oasis
        not visible after 6 attempts

        setlist 7: Friday night bar gig
        not visible after 6 attempts

    The handler looks for specific extra fields in log records:
        - 'unconfirmed_kind': "song", "setlist" or "items"
        - 'unconfirmed_id': The provisional identifier
        - 'unconfirmed_label': Short description of the entity
        - 'unconfirmed_attempts': Number of polls made

    Only records containing these fields are written to the report.
    Use log_unconfirmed_write() rather than setting the fields by hand.
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "unconfirmed_kind"):
            return

        if self.report_file is None:
            return

        try:
            kind = getattr(record, "unconfirmed_kind", "entity")
            entity_id = getattr(record, "unconfirmed_id", "?")
            label = getattr(record, "unconfirmed_label", "")
            attempts = getattr(record, "unconfirmed_attempts", 0)

            self.report_file.write(f"{kind} {entity_id}: {label}\n")
            self.report_file.write(f"not visible after {attempts} attempts\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """
    Configure the logging system for the application.

    Call once at application startup, after the configuration is loaded.

    Args:
        level: Console log level name (DEBUG, INFO, WARNING, ...).
        log_dir: Directory for run log files. If None, only the console
                 handler is installed.

    Behavior:
        1. Configure root logger level to DEBUG
        2. Install the tqdm-compatible colored console handler at `level`
        3. If log_dir is given, create it and add:
           - log_full_{timestamp}.log (DEBUG)
           - log_errors_{timestamp}.log (ERROR+)
           - unconfirmed_writes_{timestamp}.log (report handler)
        4. Raise library loggers to WARNING
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

        full_handler = logging.FileHandler(
            log_dir / f"{LOG_FULL_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
        )
        full_handler.setLevel(logging.DEBUG)
        full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        root_logger.addHandler(full_handler)

        error_handler = logging.FileHandler(
            log_dir / f"{LOG_ERRORS_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
        )
        error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
        error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        error_handler.addFilter(ErrorOnlyFilter())
        root_logger.addHandler(error_handler)

        unconfirmed_handler = UnconfirmedWriteHandler(
            log_dir / f"{UNCONFIRMED_WRITES_FILENAME}_{timestamp}.log"
        )
        unconfirmed_handler.open()
        root_logger.addHandler(unconfirmed_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'setlist_sync.remote.gateway'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called have no handlers
        of their own and follow whatever the root logger does.
    """
    return logging.getLogger(name)


def log_unconfirmed_write(kind: str, entity_id: str, label: str, attempts: int) -> None:
    """
    Log a write whose confirmation ran out of attempts.

    The record goes to the console as a WARNING and, when file logging is
    active, into the unconfirmed writes report.

    Args:
        kind: "song", "setlist" or "items".
        entity_id: Provisional identifier used for the write.
        label: Short description (song title, setlist name).
        attempts: Number of polls that were made.
    """
    logger = get_logger("setlist_sync.confirmation")
    logger.warning(
        f"{kind.capitalize()} '{label}' ({entity_id}) not confirmed after "
        f"{attempts} attempts; keeping unconfirmed local copy",
        extra={
            "unconfirmed_kind": kind,
            "unconfirmed_id": entity_id,
            "unconfirmed_label": label,
            "unconfirmed_attempts": attempts,
        }
    )


def shutdown_logging() -> None:
    """Flush and close all handlers attached to the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
