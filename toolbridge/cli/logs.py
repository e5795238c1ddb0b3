"""Logging setup shared by the ToolBridge commands."""

import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: Union[str, int] = "WARNING") -> None:
    """Route log records to stderr through rich. stdout stays free for output and protocol."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)
