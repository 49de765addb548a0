# scan_app/log_setup.py
"""
Logging for the scanner: every module logs through a child of the package
logger, which gets a console handler and, optionally, a rotating log file.
"""
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "scan_app"
CONSOLE_FORMAT = '%(levelname)-8s: %(message)s'
DETAILED_FORMAT = '%(asctime)s %(levelname)-8s [%(name)s:%(lineno)d] %(message)s'
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt = DETAILED_FORMAT if level <= logging.DEBUG else CONSOLE_FORMAT
    handler.setFormatter(logging.Formatter(fmt, datefmt='%H:%M:%S'))
    return handler

def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, mode='a', maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding='utf-8',
    )
    handler.setLevel(logging.DEBUG) # The file always gets the full trace
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S%z'))
    return handler

def setup_logging(log_level_console: int = logging.INFO, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    (Re)configures the package logger, replacing any handlers from an earlier call.
    The entry point calls this twice: once before the config is read and once
    the configured level and log file are known.
    A log file that cannot be opened is reported and logging stays console-only.
    """
    log = logging.getLogger(PACKAGE_LOGGER)
    log.setLevel(logging.DEBUG)
    for handler in log.handlers[:]:
        log.removeHandler(handler)
        handler.close()
    log.addHandler(_console_handler(log_level_console))

    if not log_file:
        return log
    try:
        log.addHandler(_file_handler(Path(log_file).expanduser().resolve()))
    except OSError as e:
        log.error(f"Failed to configure file logging to '{log_file}': {e}")
        return log
    log.info(f"--- Scan session started: {datetime.now(timezone.utc).isoformat()} ---")
    log.info(f"Command: {' '.join(sys.argv)}")
    return log

def level_from_name(name, default=logging.INFO) -> int:
    """'debug' -> logging.DEBUG; unknown or empty names give `default`."""
    if not name:
        return default
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default
