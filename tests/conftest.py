"""Shared fixtures: template trees and engines rooted in tmp_path."""

from pathlib import Path

import pytest

from quire import CompiledArtifactCache, Engine, FileSystemResolver


def write_templates(root: Path, templates: dict) -> None:
    """Write ``{"dotted.name": source}`` as ``root/dotted/name.sot.html`` files."""
    for name, source in templates.items():
        path = root / (name.replace(".", "/") + ".sot.html")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source)


@pytest.fixture
def views(tmp_path):
    root = tmp_path / "views"
    root.mkdir()
    return root


@pytest.fixture
def make_engine(tmp_path, views):
    """Build an engine over ``views`` after writing the given templates."""

    def factory(templates=None, auto_reload=False, cache_enabled=True, **kwargs):
        write_templates(views, templates or {})
        cache = CompiledArtifactCache(
            tmp_path / "compiled", auto_reload=auto_reload, enabled=cache_enabled
        )
        return Engine(FileSystemResolver([views]), cache, **kwargs)

    return factory
