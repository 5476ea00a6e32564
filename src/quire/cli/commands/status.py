"""Status command - show configuration and cache state"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.table import Table

from ..utils import console, load_engine


def status_command(verbose: bool = False, config_path: Optional[Path] = None) -> None:
    """Show view configuration, template counts and cache statistics."""
    config, engine = load_engine(config_path)
    stats = engine.cache_stats()
    names = engine.resolver.names()

    table = Table(title="View status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Template paths", "\n".join(str(p) for p in config.paths))
    table.add_row("Templates", str(len(names)))
    table.add_row("Extension", config.extension)
    table.add_row("Environment", config.environment)
    table.add_row("Cache", "[green]enabled[/green]" if stats.enabled else "[red]disabled[/red]")
    table.add_row("Auto reload", "yes" if stats.auto_reload else "no")
    table.add_row("Compiled path", stats.path)
    table.add_row("Compiled views", str(stats.count))
    table.add_row("Cache size", stats.size_human)
    if stats.oldest is not None:
        table.add_row("Oldest", stats.oldest.strftime("%Y-%m-%d %H:%M"))
        table.add_row("Newest", stats.newest.strftime("%Y-%m-%d %H:%M"))

    console.print(table)

    if verbose and names:
        templates = Table(title="Templates")
        templates.add_column("Name", style="cyan")
        templates.add_column("Compiled")
        for name in names:
            source = engine.resolver.resolve(name)
            cached = engine.cache.exists(source.path)
            templates.add_row(name, "[green]yes[/green]" if cached else "[dim]no[/dim]")
        console.print(templates)
