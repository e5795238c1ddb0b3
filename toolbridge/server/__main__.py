"""Entry point: ``python -m toolbridge.server``."""

import sys
from pathlib import Path
from typing import Optional

import click

from toolbridge import __version__
from toolbridge.cli.logs import setup_logging
from toolbridge.server.stdio import StdioServer
from toolbridge.server.tools import build_default_registry


@click.command()
@click.option("--root", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory relative tool paths resolve against (default: cwd)")
@click.option("--log-level", default="WARNING", show_default=True, help="Log level (logs go to stderr)")
def serve(root: Optional[Path], log_level: str) -> None:
    """Serve the built-in tools over stdin/stdout."""
    setup_logging(log_level)
    server = StdioServer(build_default_registry(root), version=__version__)
    server.serve(sys.stdin.buffer, sys.stdout.buffer)


def main() -> None:
    """Entry point."""
    serve()


if __name__ == "__main__":
    main()
