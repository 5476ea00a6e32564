"""Cache command - pre-compile every view"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from quire.exceptions import QuireError

from ..utils import console, load_engine

log = logging.getLogger(__name__)


def cache_command(force: bool = False, config_path: Optional[Path] = None) -> None:
    """Compile every template under the configured paths."""
    config, engine = load_engine(config_path)

    if not config.cache.enabled:
        console.print("[yellow]View caching is disabled[/yellow]")
        return

    names = engine.resolver.names()
    if not names:
        console.print("[yellow]No templates found[/yellow]")
        return

    compiled = 0
    failed = []
    for name in names:
        try:
            artifact = engine.compile(name, force=force)
        except QuireError as e:
            log.debug(f"Failed to compile {name}", exc_info=True)
            failed.append((name, str(e)))
            continue
        if artifact is not None:
            compiled += 1

    console.print(f"[green]Compiled {compiled} of {len(names)} view(s)[/green]")
    for name, message in failed:
        console.print(f"[red]  {name}: {message}[/red]")
