"""Template resolution - dotted names to source files."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Protocol, Sequence

from quire.exceptions import TemplateNotFoundError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateSource:
    """A resolved template file."""

    name: str
    path: Path

    @property
    def mtime(self) -> float:
        return self.path.stat().st_mtime

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")


class TemplateResolver(Protocol):
    """Anything that maps logical names to template sources."""

    def resolve(self, name: str) -> TemplateSource: ...

    def exists(self, name: str) -> bool: ...


class FileSystemResolver:
    """Resolves ``layouts.app`` to ``<path>/layouts/app.sot.html``.

    Each search path is tried in order; within a path the dialect extension
    wins over the plain fallback extension.
    """

    def __init__(
        self,
        paths: Sequence[Path | str],
        extension: str = ".sot.html",
        fallback_extension: str | None = ".html",
    ):
        self.paths: List[Path] = [Path(p) for p in paths]
        self.extension = extension
        self.fallback_extension = fallback_extension

    def _candidates(self, name: str) -> Iterator[Path]:
        relative = Path(*name.split("."))
        extensions = [self.extension]
        if self.fallback_extension:
            extensions.append(self.fallback_extension)
        for root in self.paths:
            for extension in extensions:
                yield root / relative.with_name(relative.name + extension)

    def resolve(self, name: str) -> TemplateSource:
        """Resolve a dotted name.

        Raises:
            TemplateNotFoundError: When no candidate file exists.
        """
        if not name or name.startswith(".") or ".." in name:
            raise TemplateNotFoundError(name)

        for candidate in self._candidates(name):
            if candidate.is_file():
                log.debug(f"Resolved view {name} -> {candidate}")
                return TemplateSource(name=name, path=candidate.resolve())

        searched = ", ".join(str(p) for p in self.paths)
        raise TemplateNotFoundError(name, location=searched)

    def exists(self, name: str) -> bool:
        try:
            self.resolve(name)
        except TemplateNotFoundError:
            return False
        return True

    def names(self) -> List[str]:
        """Dotted names of every template file under the search paths."""
        found: List[str] = []
        suffixes = [self.extension]
        if self.fallback_extension:
            suffixes.append(self.fallback_extension)

        for root in self.paths:
            if not root.is_dir():
                continue
            for path in sorted(root.rglob("*")):
                if not path.is_file():
                    continue
                relative = path.relative_to(root).as_posix()
                for suffix in suffixes:
                    if relative.endswith(suffix):
                        name = relative[: -len(suffix)].replace("/", ".")
                        if name not in found:
                            found.append(name)
                        break
        return found
