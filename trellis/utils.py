"""
Utility functions for the Trellis application.
"""

import logging
import secrets
import sys
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from trellis.constants import UID_ALPHABET, get_timestamp_format, get_uid_length

Clock = Callable[[], datetime]


def generate_uid(length: Optional[int] = None) -> str:
    """
    Generate a random alphanumeric id suffix.

    Args:
        length: Number of characters. Defaults to the configured uid length.

    Returns:
        A string drawn from [A-Za-z0-9] using a cryptographic source.
    """
    size = length if length is not None else get_uid_length()
    return "".join(secrets.choice(UID_ALPHABET) for _ in range(size))


def format_timestamp(value: Optional[datetime]) -> str:
    """
    Format a datetime for display.

    Args:
        value: The datetime to format, or None.

    Returns:
        Formatted string, or an empty string for None.
    """
    if value is None:
        return ""
    return value.strftime(get_timestamp_format())


def format_age(age: timedelta) -> str:
    """Render a lock age as whole minutes, e.g. '3 min'."""
    minutes = int(age.total_seconds() // 60)
    return f"{minutes} min"


def setup_logging(level: Union[str, int] = logging.WARNING) -> logging.Logger:
    """
    Configure the 'trellis' logger with a single stream handler.

    Safe to call more than once; existing handlers are replaced.

    Args:
        level: Logging level name or number.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("trellis")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
