"""
unstruct Logging Utilities - Session-Based Debug & Audit Logging

Overview:
---------
Centralised logging configuration for extraction runs.  Provides session-based
file logging with unique identifiers, configurable verbosity, and helpers that
truncate prompts and raw model responses before they reach the log.

Log Location:
-------------
- Default: ~/.unstruct/logs/
- Each ``setup_logging`` call creates a timestamped log file with session ID
- A symlink 'unstruct.log' always points to the latest session
- Can be overridden via UNSTRUCT_LOG_DIR environment variable

Log Levels:
-----------
- DEBUG: Rendered prompts, raw responses, per-batch dispatch and merge detail
- INFO: Run summaries (batch count, fragments merged)
- WARNING: Retries, dry-run fallbacks
- ERROR: Unrecoverable dispatch or merge failures

Usage:
------
    from unstruct.utils.logging import get_logger, setup_logging

    # Call once at startup (application entry point)
    log_file = setup_logging(level="DEBUG")

    # Get logger in any module
    logger = get_logger(__name__)
    logger.info("Starting extraction...")

The library never configures handlers on import; until ``setup_logging`` is
called, records flow to whatever the host application configured.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

# ============================================================================
# Constants
# ============================================================================

ROOT_LOGGER_NAME = "unstruct"
DEFAULT_LOG_DIR = Path.home() / ".unstruct" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
SYMLINK_NAME = "unstruct.log"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(session_id)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Detailed format for file logging (includes line numbers)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(session_id)s | %(name)s:%(lineno)d | %(message)s"

_log_file_path: Optional[Path] = None
_session_id: Optional[str] = None

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


# ============================================================================
# Session ID Filter / Formatter
# ============================================================================

class SessionIdFilter(logging.Filter):
    """Add session_id to all log records."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id  # type: ignore[attr-defined]
        return True


class SessionFormatter(logging.Formatter):
    """Formatter that adds session_id, defaulting to 'N/A' if not present."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "session_id"):
            record.session_id = _session_id or "N/A"  # type: ignore[attr-defined]
        return super().format(record)


# ============================================================================
# Setup Functions
# ============================================================================

def generate_session_id() -> str:
    """Generate a short unique session ID (6 characters)."""
    return uuid.uuid4().hex[:6]


def get_log_directory() -> Path:
    """Get the log directory, respecting UNSTRUCT_LOG_DIR environment variable."""
    env_log_dir = os.getenv("UNSTRUCT_LOG_DIR")
    if env_log_dir:
        return Path(env_log_dir)
    return DEFAULT_LOG_DIR


def generate_log_filename(session_id: str) -> str:
    """Generate a timestamped log filename with session ID."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"unstruct_{timestamp}_{session_id}.log"


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console_output: bool = False,
    quiet: bool = False,
) -> Path:
    """
    Initialise unstruct logging with a session file and optional console output.

    Parameters
    ----------
    level : str, optional
        Log level: DEBUG, INFO, WARNING, ERROR. Defaults to INFO.
        Can also be set via UNSTRUCT_LOG_LEVEL environment variable.
    log_dir : Path, optional
        Directory for log files. Defaults to ~/.unstruct/logs/
    console_output : bool
        If True, also log to console (stderr). Default False.
    quiet : bool
        If True, suppress console output entirely. Default False.

    Returns
    -------
    Path
        Path to the log file being written to.
    """
    global _log_file_path, _session_id

    _session_id = generate_session_id()

    if level is None:
        level = os.getenv("UNSTRUCT_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_dir is None:
        log_dir = get_log_directory()
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / generate_log_filename(_session_id)
    _log_file_path = log_file

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Clear any existing handlers and filters
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for f in root_logger.filters[:]:
        root_logger.removeFilter(f)

    root_logger.setLevel(log_level)
    root_logger.addFilter(SessionIdFilter(_session_id))

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(SessionFormatter(FILE_LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(file_handler)

    if console_output and not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(SessionFormatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root_logger.addHandler(console_handler)

    root_logger.propagate = False

    symlink_path = log_dir / SYMLINK_NAME
    try:
        if symlink_path.is_symlink() or symlink_path.exists():
            symlink_path.unlink()
        symlink_path.symlink_to(log_file.name)
    except OSError:
        # Symlinks need extra privileges on some platforms; the session file is still written.
        pass

    root_logger.info("=" * 80)
    root_logger.info("unstruct logging session started")
    root_logger.info(f"  Session ID: {_session_id}")
    root_logger.info(f"  Log file: {log_file}")
    root_logger.info(f"  Log level: {level.upper()}")
    root_logger.info("=" * 80)

    return log_file


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the ``unstruct`` namespace.

    Example
    -------
        logger = get_logger(__name__)
        logger.debug("Dispatching batch...")
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_current_log_file() -> Optional[Path]:
    """Return the path to the current log file, if logging is initialised."""
    return _log_file_path


def get_session_id() -> Optional[str]:
    """Return the current session ID, if logging is initialised."""
    return _session_id


# ============================================================================
# Logging Helper Functions
# ============================================================================

def _truncate(content: str, truncate_at: int) -> str:
    if len(content) > truncate_at:
        return content[:truncate_at] + f"... [TRUNCATED, {len(content)} chars total]"
    return content


def log_prompt(
    logger: logging.Logger,
    label: str,
    prompt_content: str,
    truncate_at: int = 2000,
) -> None:
    """Log a rendered prompt at DEBUG, truncated to *truncate_at* characters."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"PROMPT ({label}):\n{_truncate(prompt_content, truncate_at)}")


def log_llm_response(
    logger: logging.Logger,
    label: str,
    response_content: str,
    truncate_at: int = 2000,
) -> None:
    """Log a raw model response at DEBUG, truncated to *truncate_at* characters."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"LLM RESPONSE ({label}):\n{_truncate(response_content, truncate_at)}")
