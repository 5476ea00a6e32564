"""Loop metadata exposed as ``loop`` inside ``@foreach`` bodies."""

from __future__ import annotations

import weakref
from typing import Any, Optional


class LoopFrame:
    """Per-iteration metadata of one loop.

    ``count``, ``remaining`` and ``last`` are only known when the iterable
    supports ``len()``; otherwise they are ``None``. The parent frame is held
    through a weak reference, the engine's loop stack owns every frame.
    """

    def __init__(self, count: Optional[int], depth: int = 1, parent: Optional["LoopFrame"] = None):
        self.count = count
        self.depth = depth
        self.iteration = 0
        self.index = -1
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> Optional["LoopFrame"]:
        return self._parent() if self._parent is not None else None

    def increment(self) -> None:
        """Advance to the next iteration."""
        self.iteration += 1
        self.index = self.iteration - 1

    @property
    def first(self) -> bool:
        return self.iteration == 1

    @property
    def last(self) -> Optional[bool]:
        if self.count is None:
            return None
        return self.iteration == self.count

    @property
    def remaining(self) -> Optional[int]:
        if self.count is None:
            return None
        return self.count - self.iteration

    @property
    def even(self) -> bool:
        return self.iteration % 2 == 0

    @property
    def odd(self) -> bool:
        return self.iteration % 2 == 1

    def progress(self) -> float:
        """Completed share of the loop as a percentage (0 when unsized)."""
        if not self.count:
            return 0.0
        return round(self.iteration / self.count * 100, 2)

    def __getitem__(self, key: str) -> Any:
        if key.startswith("_") or not hasattr(self, key):
            raise KeyError(key)
        return getattr(self, key)

    def __repr__(self) -> str:
        return (
            f"LoopFrame(index={self.index}, iteration={self.iteration}, "
            f"count={self.count}, depth={self.depth})"
        )
