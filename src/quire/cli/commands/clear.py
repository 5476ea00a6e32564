"""Clear command - remove compiled views"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..utils import console, load_engine


def clear_command(config_path: Optional[Path] = None) -> None:
    """Remove every compiled artifact."""
    _, engine = load_engine(config_path)
    count = engine.clear_cache()
    console.print(f"[green]Cleared {count} compiled view(s)[/green]")
