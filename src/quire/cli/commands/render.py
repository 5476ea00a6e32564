"""Render command - print a rendered view"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from quire.exceptions import QuireError

from ..utils import exit_with_error, handle_error, load_engine


def render_command(name: str, data: Optional[str] = None, config_path: Optional[Path] = None) -> None:
    """Render view NAME with JSON data and print the result."""
    values = {}
    if data:
        try:
            values = json.loads(data)
        except json.JSONDecodeError as e:
            exit_with_error(f"--data is not valid JSON: {e}")
        if not isinstance(values, dict):
            exit_with_error("--data must be a JSON object")

    _, engine = load_engine(config_path)
    try:
        output = engine.render(name, values)
    except QuireError as e:
        handle_error(e)

    typer.echo(output, nl=False)
