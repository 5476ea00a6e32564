"""Shared helpers for the quire CLI."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from quire.config import ViewConfig
from quire.engine import Engine
from quire.exceptions import QuireError, ViewError

console = Console()

DEBUG_ENV = "QUIRE_DEBUG"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the quire CLI.

    Log levels:
    - Normal: only warnings/errors shown
    - Verbose (-v): INFO level - compiled views, cache operations
    - Debug (QUIRE_DEBUG=1): DEBUG level - every compile/cache decision
    """
    debug = bool(os.environ.get(DEBUG_ENV))
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=console,
        show_time=verbose,
        show_path=debug,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("quire")
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False


def exit_with_error(message: str, exit_code: int = 1) -> NoReturn:
    """Print an error in red and exit."""
    typer.secho(f"Error: {message}", err=True, fg=typer.colors.RED)
    raise typer.Exit(code=exit_code)


def handle_error(error: QuireError) -> NoReturn:
    if isinstance(error, ViewError):
        exit_with_error(error.formatted().removeprefix("View Error: "))
    exit_with_error(str(error))


def load_engine(config_path: Optional[Path]) -> tuple[ViewConfig, Engine]:
    """Load configuration and build an engine from it."""
    config = ViewConfig.load(config_path)
    return config, Engine.from_config(config)
