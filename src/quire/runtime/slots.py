"""Component slot content."""

from __future__ import annotations

from typing import Dict, Optional


class ComponentSlot:
    """Rendered slot content, exposed to component templates as ``slot``.

    Behaves like a string of already-rendered markup: it is written without
    escaping and is falsy when it holds only whitespace.
    """

    def __init__(self, content: str = "", named: Optional[Dict[str, "ComponentSlot"]] = None):
        self.content = content or ""
        self._named = dict(named or {})

    def has_content(self) -> bool:
        return bool(self.content.strip())

    def is_empty(self) -> bool:
        return not self.has_content()

    def get(self, name: str, default: str = "") -> "ComponentSlot":
        """A named slot of the same invocation, ``default`` when absent."""
        slot = self._named.get(name)
        if slot is None:
            return ComponentSlot(default)
        return slot

    def has(self, name: str) -> bool:
        return name in self._named and self._named[name].has_content()

    def __html__(self) -> str:
        return self.content

    def __str__(self) -> str:
        return self.content

    def __bool__(self) -> bool:
        return self.has_content()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ComponentSlot):
            return self.content == other.content
        if isinstance(other, str):
            return self.content == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.content)

    def __repr__(self) -> str:
        return f"ComponentSlot({self.content!r})"
