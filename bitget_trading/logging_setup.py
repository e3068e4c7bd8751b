"""Structured logging setup using loguru.

All console output goes to stderr so that stdout stays a clean payload
(JSON or text summary) for the command-line front-end.
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
) -> None:
    """Configure structured logging for the trade command.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        enable_console: Whether to log to stderr as well
    """
    # Remove default handler
    _logger.remove()

    # Log format: timestamp, level, module, function, message
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_path),
            format=log_format,
            level=level.upper(),
            rotation="100 MB",  # rotate when file reaches 100 MB
            retention="7 days",  # keep 7 days of logs
        )

    if enable_console:
        _logger.add(
            sys.stderr,
            format=log_format,
            level=level.upper(),
            colorize=True,
        )


# Get logger for use in modules
logger = _logger
