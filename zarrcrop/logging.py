"""Library logger for zarrcrop.

Messages go to the ``zarrcrop`` logger, which stays silent (NullHandler)
until an application calls ``configure_logging`` or sets up logging itself.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

LIBRARY_LOGGER_NAME = "zarrcrop"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under ``zarrcrop``; ``None`` gives the library logger itself."""
    if name is None or name == LIBRARY_LOGGER_NAME:
        return logging.getLogger(LIBRARY_LOGGER_NAME)
    if name.startswith(LIBRARY_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LIBRARY_LOGGER_NAME}.{name}")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
    stream: Optional[object] = None,
) -> None:
    """
    Send zarrcrop log messages to a handler (stderr by default).

    Replaces any handlers previously attached to the ``zarrcrop`` logger.
    ``level`` may be a name such as ``"debug"``.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    logger.setLevel(level)

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)

    if handler.formatter is None:
        handler.setFormatter(logging.Formatter(format_string))

    handler.setLevel(level)

    logger.handlers.clear()
    logger.addHandler(handler)


def _setup_library_logging() -> None:
    """Attach a NullHandler to the library logger if nothing is configured."""
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())


_setup_library_logging()
