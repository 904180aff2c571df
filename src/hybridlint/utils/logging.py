"""
Logging configuration using Loguru.

Usage:
    from hybridlint.utils.logging import logger
    logger.info("Message")

Environment Variables:
    HYBRIDLINT_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: WARNING)
    HYBRIDLINT_LOG_FILE: path to an additional log file (optional)
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from loguru import logger

logger.remove()

_log_level = os.environ.get("HYBRIDLINT_LOG_LEVEL", "WARNING").upper()
_log_file = os.environ.get("HYBRIDLINT_LOG_FILE")

_human_format = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}:{function}:{line}</cyan> - "
    "<level>{message}</level>"
)

_console_handler_id: Optional[int] = logger.add(
    sys.stderr,
    level=_log_level,
    format=_human_format,
    colorize=None,
)

if _log_file:
    logger.add(
        _log_file,
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    )


def set_console_level(level: str) -> None:
    """Replace the console handler with one at a different level (e.g. --verbose)."""
    global _console_handler_id
    if _console_handler_id is not None:
        logger.remove(_console_handler_id)
    _console_handler_id = logger.add(
        sys.stderr,
        level=level.upper(),
        format=_human_format,
        colorize=None,
    )
