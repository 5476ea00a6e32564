"""Rendering engine.

Resolves a template, compiles it on demand through the artifact cache and
evaluates it. Evaluation writes into a stack of string buffers; sections,
pushes, slots and components capture output by pushing a buffer and collect
it when their matching end runs.

An engine instance is stateful and not thread-safe; use one per concurrent
render.
"""

from __future__ import annotations

import fnmatch
import io
import json
import logging
import pprint
import uuid
from collections.abc import Mapping, Sized
from dataclasses import dataclass, field
from pathlib import Path
from types import CodeType
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from markupsafe import Markup, escape

from quire.cache import CacheStats, CompiledArtifactCache
from quire.compiler import ComponentTagCompiler, DirectiveCompiler, DirectiveHandler
from quire.config import ViewConfig
from quire.exceptions import (
    QuireError,
    TemplateNotFoundError,
    TemplateSyntaxError,
    ViewError,
    ViewEvaluationError,
    ViewStructureError,
)
from quire.resolver import FileSystemResolver, TemplateResolver, TemplateSource
from quire.runtime import AttributesBag, ComponentSlot, LoopFrame, class_list, split_props

log = logging.getLogger(__name__)

Composer = Callable[[str, Dict[str, Any]], Optional[Mapping]]

# Errors that make @isset false and @empty true instead of failing the render.
_MISSING = (NameError, AttributeError, KeyError, IndexError, TypeError)


def escape_html(value: Any) -> str:
    """Default escape function; ``None`` renders as an empty string."""
    if value is None:
        return ""
    return str(escape(value))


@dataclass
class _RenderFrame:
    """One template evaluation in progress (a render, include or component)."""

    name: str
    source: TemplateSource
    namespace: Dict[str, Any] = field(default_factory=dict)
    layout: Optional[str] = None
    layout_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Capture:
    """An open begin/end pair that owns the buffer at ``depth``."""

    kind: str
    name: str
    depth: int


@dataclass
class _ComponentFrame:
    name: str
    props: Dict[str, Any]
    slots: Dict[str, ComponentSlot] = field(default_factory=dict)
    current_slot: Optional[str] = None


class Engine:
    """Compiles and renders templates.

    Args:
        resolver: Maps dotted template names to sources.
        cache: Compiled artifact cache.
        escape: Escape function used by ``{{ }}``.
        directives: Custom directive handlers for this engine's compiler.
        aliases: Component tag aliases.
        component_prefix: Name prefix under which components are resolved.
        environment: Value tested by ``@env`` and ``@production``.
        shared: Data made available to every template.
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        cache: CompiledArtifactCache,
        escape: Callable[[Any], str] = escape_html,
        directives: Optional[Mapping[str, DirectiveHandler]] = None,
        aliases: Optional[Mapping[str, str]] = None,
        component_prefix: str = "components",
        environment: str = "production",
        shared: Optional[Mapping[str, Any]] = None,
    ):
        self.resolver = resolver
        self.cache = cache
        self.escape = escape
        self.compiler = DirectiveCompiler(directives)
        self.tag_compiler = ComponentTagCompiler(aliases)
        self.component_prefix = component_prefix
        self.environment = environment
        self._shared: Dict[str, Any] = dict(shared or {})
        self._composers: List[Tuple[str, Composer]] = []
        self._parent_placeholder = f"##parent-placeholder-{uuid.uuid4().hex}##"
        self.reset()

    @classmethod
    def from_config(cls, config: ViewConfig, **kwargs: Any) -> "Engine":
        """Build resolver, cache and engine from a :class:`ViewConfig`."""
        resolver = FileSystemResolver(
            config.paths,
            extension=config.extension,
            fallback_extension=config.fallback_extension,
        )
        cache = CompiledArtifactCache(
            config.compiled,
            auto_reload=config.auto_reload,
            enabled=config.cache.enabled,
        )
        return cls(
            resolver,
            cache,
            aliases=config.components.aliases,
            component_prefix=config.components.prefix,
            environment=config.environment,
            shared=config.shared,
            **kwargs,
        )

    def reset(self) -> None:
        """Drop all per-render state."""
        self._frames: List[_RenderFrame] = []
        self._buffers: List[io.StringIO] = []
        self._captures: List[_Capture] = []
        self._components: List[_ComponentFrame] = []
        self._loops: List[LoopFrame] = []
        self._sections: Dict[str, str] = {}
        self._stacks: Dict[str, List[str]] = {}
        self._pushed_once: set = set()
        self._once: set = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def share(self, key: str, value: Any) -> None:
        """Make ``key`` available to every template."""
        self._shared[key] = value

    def composer(self, pattern: str, callback: Composer) -> None:
        """Run ``callback(name, data)`` before rendering views matching ``pattern``.

        The callback may mutate ``data`` or return a mapping merged into it.
        """
        self._composers.append((pattern, callback))

    def directive(self, name: str, handler: DirectiveHandler) -> None:
        self.compiler.directive(name, handler)

    def alias(self, alias: str, component: str) -> None:
        self.tag_compiler.alias(alias, component)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self.resolver.exists(name)

    def render(self, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        """Render a template to a string.

        Raises:
            TemplateNotFoundError: The name (or a layout, include or component
                it needs) has no source.
            TemplateSyntaxError: A template does not compile.
            ViewStructureError: A section, slot, push or component is not closed.
            ViewEvaluationError: Template code raised.
        """
        top_level = not self._frames
        if top_level:
            self.reset()
        try:
            return self._render(name, dict(data or {}))
        finally:
            if top_level:
                self.reset()

    def _render(self, name: str, data: Dict[str, Any]) -> str:
        source = self.resolver.resolve(name)
        data = self._compose(name, {**self._shared, **data})

        frame = _RenderFrame(name=name, source=source)
        self._frames.append(frame)
        try:
            output = self._evaluate(frame, source, data)

            # Each layout level completes before its parent starts.
            while frame.layout is not None:
                layout, layout_data = frame.layout, frame.layout_data
                frame.layout, frame.layout_data = None, {}

                frame.name = layout
                frame.source = self.resolver.resolve(layout)
                log.debug(f"View {name} extends {layout}")
                output = self._evaluate(
                    frame,
                    frame.source,
                    {**data, **layout_data, "__sections": dict(self._sections)},
                )
            return output
        finally:
            self._frames.pop()

    def _compose(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        for pattern, callback in self._composers:
            if fnmatch.fnmatchcase(name, pattern):
                extra = callback(name, data)
                if extra:
                    data.update(extra)
        return data

    def _evaluate(self, frame: _RenderFrame, source: TemplateSource, data: Dict[str, Any]) -> str:
        code, location = self._code_for(source)

        namespace: Dict[str, Any] = {"__props": {}, "loop": None}
        namespace.update(data)
        namespace.update(
            {
                "__view": self,
                "__write": self.write,
                "__e": self.escape,
                "__data": data,
            }
        )
        frame.namespace = namespace

        depths = (len(self._buffers), len(self._captures), len(self._components), len(self._loops))
        self._buffers.append(io.StringIO())
        try:
            exec(code, namespace)
        except QuireError as e:
            self._truncate(*depths)
            if isinstance(e, ViewError) and e.location is None:
                e.template = e.template or source.name
                e.location = str(location)
            raise
        except Exception as e:
            self._truncate(*depths)
            raise ViewEvaluationError(e, template=source.name, location=location) from e

        if len(self._captures) > depths[1]:
            capture = self._captures[depths[1]]
            self._truncate(*depths)
            raise ViewStructureError(
                f"Unclosed @{capture.kind}('{capture.name}')",
                template=source.name,
                location=location,
            )

        output = self._buffers[depths[0]].getvalue()
        self._truncate(*depths)
        return output

    def _truncate(self, buffers: int, captures: int, components: int, loops: int) -> None:
        del self._buffers[buffers:]
        del self._captures[captures:]
        del self._components[components:]
        del self._loops[loops:]

    def write(self, value: Any) -> None:
        """Write to the innermost buffer."""
        if value is None:
            return
        self._buffers[-1].write(value if isinstance(value, str) else str(value))

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile_source(self, source: TemplateSource) -> str:
        """Run both compiler passes over a template source."""
        text = self.tag_compiler.compile(source.read(), source.name)
        return self.compiler.compile(text, source.name)

    def compile(self, name: str, force: bool = True) -> Optional[Path]:
        """Compile ``name`` into the cache without rendering it.

        Returns the artifact path, or None when nothing was written.
        """
        source = self.resolver.resolve(name)
        artifact = self.cache.location_for(source.path)
        if not force and not self.cache.is_expired(source.path, artifact):
            return artifact

        code = self.compile_source(source)
        self._to_code(code, str(artifact), source.name)
        if self.cache.put(artifact, code):
            log.info(f"Compiled {name} -> {artifact.name}")
            return artifact
        return None

    def _code_for(self, source: TemplateSource) -> Tuple[CodeType, Path]:
        artifact = self.cache.location_for(source.path)

        if not self.cache.is_expired(source.path, artifact):
            try:
                return self.cache.load(artifact), artifact
            except OSError as e:
                log.warning(f"Could not load compiled view {artifact}: {e}")

        log.debug(f"Compiling view {source.name} ({source.path})")
        code = self.compile_source(source)

        if self.cache.put(artifact, code):
            return self._to_code(code, str(artifact), source.name), artifact

        # Cache disabled or unwritable: run the in-memory result.
        return self._to_code(code, str(source.path), source.name), source.path

    @staticmethod
    def _to_code(code: str, filename: str, template: str) -> CodeType:
        try:
            return compile(code, filename, "exec")
        except SyntaxError as e:
            raise TemplateSyntaxError(
                f"compiled code is invalid: {e.msg} (line {e.lineno})", template
            ) from e

    # ------------------------------------------------------------------
    # Cache operations
    # ------------------------------------------------------------------

    def clear_cache(self) -> int:
        return self.cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def forget(self, name: str) -> bool:
        """Drop the compiled artifact of one template."""
        return self.cache.forget(self.resolver.resolve(name).path)

    # ------------------------------------------------------------------
    # Captures
    # ------------------------------------------------------------------

    def _start_capture(self, kind: str, name: str) -> None:
        self._captures.append(_Capture(kind=kind, name=name, depth=len(self._buffers)))
        self._buffers.append(io.StringIO())

    def _end_capture(self, kind: str) -> Tuple[str, str]:
        if not self._captures or self._captures[-1].kind != kind:
            open_kind = self._captures[-1].kind if self._captures else None
            detail = f" (innermost open block is @{open_kind})" if open_kind else ""
            raise ViewStructureError(
                f"Cannot end a {kind} without first starting one{detail}"
            )
        capture = self._captures.pop()
        content = self._buffers[capture.depth].getvalue()
        del self._buffers[capture.depth :]
        return capture.name, content

    def capture(self, callback: Callable[[], Any]) -> str:
        """Run ``callback`` and return what it wrote."""
        depth = len(self._buffers)
        self._buffers.append(io.StringIO())
        try:
            callback()
            return self._buffers[depth].getvalue()
        finally:
            del self._buffers[depth:]

    def lazy_slot(self, callback: Callable[[], Any]) -> ComponentSlot:
        """Render a compiled slot body into a :class:`ComponentSlot`."""
        return ComponentSlot(self.capture(callback).strip())

    # ------------------------------------------------------------------
    # Layouts and sections
    # ------------------------------------------------------------------

    def extends(self, layout: str, data: Optional[Mapping[str, Any]] = None) -> None:
        """Render ``layout`` after the current template finishes."""
        frame = self._frames[-1]
        frame.layout = layout
        frame.layout_data = dict(data or {})

    def start_section(self, name: str, content: Any = None) -> None:
        if content is not None:
            self._extend_section(name, str(content))
            return
        self._start_capture("section", name)

    def end_section(self, overwrite: bool = False) -> str:
        """Seal the innermost open section; returns its name."""
        name, content = self._end_capture("section")
        if overwrite:
            self._sections[name] = content
        else:
            self._extend_section(name, content)
        return name

    stop_section = end_section

    def _extend_section(self, name: str, content: str) -> None:
        # A child level runs first; its content wins and @parent pulls ours in.
        if name in self._sections:
            content = self._sections[name].replace(self._parent_placeholder, content)
        self._sections[name] = content

    def yield_section(self) -> str:
        return self.yield_content(self.end_section())

    def yield_content(self, name: str, default: Any = "") -> str:
        content = self._sections.get(name)
        if content is None:
            return self.escape(default)
        return content.replace(self._parent_placeholder, "")

    def has_section(self, name: str) -> bool:
        return name in self._sections

    def parent_placeholder(self) -> str:
        return self._parent_placeholder

    # ------------------------------------------------------------------
    # Includes
    # ------------------------------------------------------------------

    def _inherited_data(self, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        inherited: Dict[str, Any] = {}
        if self._frames:
            inherited = {
                key: value
                for key, value in self._frames[-1].namespace.items()
                if not key.startswith("__") and key != "loop"
            }
        inherited.update(data or {})
        return inherited

    def include(self, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        return self._render(name, self._inherited_data(data))

    def include_if(self, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        if not self.exists(name):
            return ""
        return self.include(name, data)

    def include_when(self, condition: Any, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        return self.include(name, data) if condition else ""

    def include_unless(self, condition: Any, name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        return "" if condition else self.include(name, data)

    def include_first(self, names: Iterable[str], data: Optional[Mapping[str, Any]] = None) -> str:
        """Include the first existing template of ``names``."""
        names = list(names)
        for name in names:
            if self.exists(name):
                return self.include(name, data)
        raise TemplateNotFoundError(", ".join(names))

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _component_view(self, name: str) -> str:
        if self.component_prefix:
            return f"{self.component_prefix}.{name}"
        return name

    def component(
        self,
        name: str,
        props: Optional[Mapping[str, Any]] = None,
        slot: Any = "",
        slots: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Render a component; shared by tags and ``@component`` blocks.

        Args:
            name: Component name, resolved under the component prefix.
            props: Attributes passed to the component.
            slot: Default slot content.
            slots: Named slot contents.
        """
        props = dict(props or {})
        named = {
            key: value if isinstance(value, ComponentSlot) else ComponentSlot(str(value))
            for key, value in (slots or {}).items()
        }
        content = str(slot) if slot is not None else ""

        data: Dict[str, Any] = dict(props)
        data.update(named)
        data["slot"] = ComponentSlot(content, named)
        data["attributes"] = AttributesBag(props)
        data["__props"] = props
        return self._render(self._component_view(name), data)

    def start_component(self, name: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._components.append(_ComponentFrame(name=name, props=dict(data or {})))
        self._start_capture("component", name)

    def slot(self, name: str, content: Any = None) -> None:
        if not self._components:
            raise ViewStructureError(f"@slot('{name}') outside of a component")
        frame = self._components[-1]
        if content is not None:
            frame.slots[name] = ComponentSlot(str(content))
            return
        frame.current_slot = name
        self._start_capture("slot", name)

    def end_slot(self) -> None:
        name, content = self._end_capture("slot")
        frame = self._components[-1]
        frame.slots[name] = ComponentSlot(content.strip())
        frame.current_slot = None

    def render_component(self) -> str:
        _, content = self._end_capture("component")
        frame = self._components.pop()
        return self.component(frame.name, frame.props, content.strip(), frame.slots)

    def extract_props(self, declared: Any, bound: Mapping[str, Any]) -> Dict[str, Any]:
        """Split ``bound`` into declared props (with defaults) and ``attributes``."""
        props, attributes = split_props(declared, bound)
        return {**props, "attributes": attributes}

    # ------------------------------------------------------------------
    # Stacks
    # ------------------------------------------------------------------

    def start_push(self, name: str, content: Any = None) -> None:
        if content is not None:
            self._stacks.setdefault(name, []).append(str(content))
            return
        self._start_capture("push", name)

    def end_push(self) -> None:
        name, content = self._end_capture("push")
        self._stacks.setdefault(name, []).append(content)

    def start_prepend(self, name: str, content: Any = None) -> None:
        if content is not None:
            self._stacks.setdefault(name, []).insert(0, str(content))
            return
        self._start_capture("prepend", name)

    def end_prepend(self) -> None:
        name, content = self._end_capture("prepend")
        self._stacks.setdefault(name, []).insert(0, content)

    def start_push_once(self, name: str, key: Optional[str] = None) -> bool:
        """Start a push unless ``key`` (default: the stack name) was pushed already.

        Returns False when the content must be skipped.
        """
        key = key or name
        if key in self._pushed_once:
            return False
        self._pushed_once.add(key)
        self.start_push(name)
        return True

    def render_stack(self, name: str, default: str = "") -> str:
        fragments = self._stacks.get(name)
        if not fragments:
            return default
        return "".join(fragments)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def add_loop(self, data: Any) -> None:
        count = len(data) if isinstance(data, Sized) else None
        parent = self._loops[-1] if self._loops else None
        self._loops.append(LoopFrame(count, depth=len(self._loops) + 1, parent=parent))

    def increment_loop_indices(self) -> None:
        self._loops[-1].increment()

    def pop_loop(self) -> None:
        self._loops.pop()

    def get_last_loop(self) -> Optional[LoopFrame]:
        return self._loops[-1] if self._loops else None

    @staticmethod
    def sized(iterable: Any) -> Any:
        """``iterable`` itself when it has a length, else a list of it."""
        if isinstance(iterable, Sized):
            return iterable
        return list(iterable)

    @staticmethod
    def pairs(iterable: Any) -> Iterable[Tuple[Any, Any]]:
        """``(key, value)`` pairs: mapping items or enumerated items."""
        if isinstance(iterable, Mapping):
            return iterable.items()
        return enumerate(iterable)

    # ------------------------------------------------------------------
    # Template helpers
    # ------------------------------------------------------------------

    @staticmethod
    def isset(getter: Callable[[], Any]) -> bool:
        try:
            return getter() is not None
        except _MISSING:
            return False

    @staticmethod
    def is_empty(getter: Callable[[], Any]) -> bool:
        try:
            return not getter()
        except _MISSING:
            return True

    @staticmethod
    def coalesce(*getters: Callable[[], Any]) -> Any:
        """Value of the first set, non-None operand of ``a ?? b ?? c``.

        Only the last operand is evaluated unguarded, so its errors propagate.
        """
        for getter in getters[:-1]:
            try:
                value = getter()
            except _MISSING:
                continue
            if value is not None:
                return value
        return getters[-1]()

    def once(self, key: str) -> bool:
        """True the first time ``key`` is seen during a top-level render."""
        if key in self._once:
            return False
        self._once.add(key)
        return True

    def environment_is(self, *environments: Any) -> bool:
        names: List[str] = []
        for environment in environments:
            if isinstance(environment, (list, tuple, set)):
                names.extend(environment)
            else:
                names.append(environment)
        return self.environment in names

    @staticmethod
    def method_field(method: str) -> str:
        return Markup('<input type="hidden" name="_method" value="{}">').format(method.upper())

    @staticmethod
    def error_for(errors: Any, key: str) -> Optional[str]:
        """First validation message for ``key``; None when there is none."""
        if errors is None:
            return None
        if hasattr(errors, "first"):
            return errors.first(key)
        if not isinstance(errors, Mapping):
            return None
        messages = errors.get(key)
        if not messages:
            return None
        if isinstance(messages, str):
            return messages
        return messages[0]

    @staticmethod
    def class_list(classes: Any) -> str:
        return str(escape(class_list(classes)))

    @staticmethod
    def to_json(value: Any, indent: Optional[int] = None) -> str:
        """JSON safe to embed in HTML and ``<script>`` blocks."""
        encoded = json.dumps(value, indent=indent, default=str)
        return (
            encoded.replace("<", "\\u003c")
            .replace(">", "\\u003e")
            .replace("&", "\\u0026")
            .replace("'", "\\u0027")
        )

    def dump(self, value: Any) -> str:
        return f"<pre>{self.escape(pprint.pformat(value))}</pre>"
