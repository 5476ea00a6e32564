"""CLI commands"""

from .cache import cache_command
from .clear import clear_command
from .render import render_command
from .status import status_command

__all__ = ["cache_command", "clear_command", "render_command", "status_command"]
