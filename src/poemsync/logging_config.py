"""Logging setup for the command-line entry point.

Library modules only create loggers; handlers are installed here.
"""

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "WARNING") -> None:
    """Route ``poemsync`` log records through a Rich handler."""
    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger("poemsync")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root.propagate = False
