"""quire - template compilation and rendering engine.

Templates use a directive dialect (``@if``, ``@foreach``, ``@extends``,
``<x-component>`` tags, ...) that is compiled to Python modules, cached on
disk and evaluated against caller data.

Usage:
    from quire import Engine, ViewConfig

    engine = Engine.from_config(ViewConfig.load("quire.yaml"))
    html = engine.render("pages.home", {"name": "Al"})
"""

from quire.cache import CacheStats, CompiledArtifactCache
from quire.compiler import ComponentTagCompiler, DirectiveCompiler
from quire.config import ViewConfig
from quire.engine import Engine, escape_html
from quire.exceptions import (
    QuireError,
    TemplateNotFoundError,
    TemplateSyntaxError,
    ViewError,
    ViewEvaluationError,
    ViewStructureError,
)
from quire.resolver import FileSystemResolver, TemplateSource
from quire.runtime import AttributesBag, ComponentSlot, LoopFrame

__version__ = "0.1.0"

__all__ = [
    "AttributesBag",
    "CacheStats",
    "CompiledArtifactCache",
    "ComponentSlot",
    "ComponentTagCompiler",
    "DirectiveCompiler",
    "Engine",
    "FileSystemResolver",
    "LoopFrame",
    "QuireError",
    "TemplateNotFoundError",
    "TemplateSource",
    "TemplateSyntaxError",
    "ViewConfig",
    "ViewError",
    "ViewEvaluationError",
    "ViewStructureError",
    "escape_html",
]
