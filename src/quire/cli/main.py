"""quire CLI

Usage:
    quire render NAME [--data JSON]   # Render a view to stdout
    quire cache [--force]             # Pre-compile every view
    quire clear                       # Remove compiled views
    quire status [-v]                 # Show configuration and cache state

Every command accepts -c/--config (default: ./quire.yaml).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from .commands import cache_command, clear_command, render_command, status_command
from .utils import setup_logging

app = typer.Typer(help="Compile and render quire templates.", no_args_is_help=True)

ConfigOption = typer.Option(
    None, "-c", "--config", help="Path to quire.yaml (default: ./quire.yaml)."
)
VerboseOption = typer.Option(False, "-v", "--verbose", help="Show INFO logs.")


@app.command("render")
def render(
    name: str = typer.Argument(..., help="Dotted view name, e.g. pages.home"),
    data: Optional[str] = typer.Option(None, "-d", "--data", help="View data as a JSON object."),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Render a view and print it."""
    setup_logging(verbose)
    render_command(name, data=data, config_path=config)


@app.command("cache")
def cache(
    force: bool = typer.Option(False, "-f", "--force", help="Recompile fresh views too."),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Pre-compile every view."""
    setup_logging(verbose)
    cache_command(force=force, config_path=config)


@app.command("clear")
def clear(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Remove every compiled view."""
    setup_logging(verbose)
    clear_command(config_path=config)


@app.command("status")
def status(
    config: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="List every template."),
) -> None:
    """Show configuration, template counts and cache statistics."""
    setup_logging(verbose)
    status_command(verbose=verbose, config_path=config)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
