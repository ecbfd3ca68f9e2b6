"""
Logging setup for Script Bridge.
"""

from __future__ import annotations

import logging

from rich.logging import RichHandler

_ROOT_LOGGER = "script_bridge"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the package namespace."""
    return logging.getLogger(name)


def setup_logging(level: str | int = "WARNING", rich: bool = True) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level name or number
        rich: Render records with Rich instead of a plain stream handler

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if rich:
        handler: logging.Handler = RichHandler(
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    logger.addHandler(handler)
    logger.propagate = False
    return logger
