"""Structured logging setup using loguru."""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(
    log_file: Optional[str] = None,
    level: str = "WARNING",
    enable_console: bool = True,
) -> None:
    """Configure logging for the CLI and the daemon.

    Args:
        log_file: Optional path to a rotating log file
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Log to stderr; stdout is reserved for command output
    """
    _logger.remove()

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_path),
            format=LOG_FORMAT,
            level=level,
            rotation="10 MB",
            retention="7 days",
        )

    if enable_console:
        _logger.add(
            sys.stderr,
            format=LOG_FORMAT,
            level=level,
            colorize=True,
        )


logger = _logger
