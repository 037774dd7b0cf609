# Logging_Config.py
# Description: Loguru sink configuration for the course_tracker core.
#
# Imports
import os
import sys
from pathlib import Path
from typing import Optional, Union
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from course_tracker.config import get_log_file_path, get_setting
#
########################################################################################################################
#
# Functions:

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} - {level} - {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def _ensure_log_dir_exists(file_path: Union[str, Path]) -> str:
    expanded_path = os.path.expanduser(str(file_path))
    log_dir = os.path.dirname(expanded_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return expanded_path


def _is_sync_event(record) -> bool:
    return "sync_event" in record["extra"]


def setup_logger(
    log_level: Optional[str] = None,
    app_log_path: Optional[Union[str, Path]] = None,
    sync_events_log_path: Optional[Union[str, Path]] = None,
    console: bool = True,
):
    """
    Sets up Loguru sinks: console, a rotating application log, and an optional
    JSON log of sync cycle events (records bound with `sync_event`).

    Args:
        log_level: Minimum console level. Defaults to [general] log_level.
        app_log_path: Text log file. Defaults to the configured log file next to the database.
        sync_events_log_path: JSON sync event log. Disabled when None.
        console: Whether to log to stderr.

    Returns:
        The configured logger instance.
    """
    level = (log_level or get_setting("general", "log_level", "INFO")).upper()
    logger.remove()

    if console:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    path = _ensure_log_dir_exists(app_log_path or get_log_file_path())
    logger.add(
        path,
        level=str(get_setting("logging", "file_log_level", "DEBUG")).upper(),
        format=FILE_FORMAT,
        rotation=get_setting("logging", "log_rotation", "10 MB"),
        retention=get_setting("logging", "log_retention", 5, int),
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )
    logger.info(f"Application logs will be written to: {path}")

    if sync_events_log_path:
        events_path = _ensure_log_dir_exists(sync_events_log_path)
        logger.add(
            events_path,
            level="DEBUG",
            serialize=True,
            filter=_is_sync_event,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
        logger.info(f"Sync events will be written to: {events_path}")

    return logger

#
# End of Logging_Config.py
########################################################################################################################
