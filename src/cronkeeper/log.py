"""Logging setup for applications embedding the controller."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Configure logging.

    Args:
        verbose: Log at DEBUG and include logger names.
        level: Explicit level name (e.g. Settings.log_level); overrides verbose.
    """
    if level is not None:
        log_level = logging.getLevelName(level.upper())
    else:
        log_level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=log_level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True), show_path=verbose)],
    )
