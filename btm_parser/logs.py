"""Diagnostics output through rich."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "btm_parser"


def setup_logging(level: int = logging.WARNING, console: Console | None = None) -> logging.Logger:
    """
    Route the package logger to stderr through a rich handler.

    Calling it again replaces the previously installed handler.

    Args:
        level: Minimum level to display
        console: Console to write to (default: a new stderr console)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=level <= logging.DEBUG,
        markup=False,
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
