"""Component tag compiler - lowers ``<x-...>`` tags to internal directives.

    <x-alert type="error" :message="$msg" />
    <x-card title="Hi {{ $name }}">
        <x-slot:footer>Thanks</x-slot>
        Body
    </x-card>

becomes a sequence of ``@__slot``/``@__endslot`` blocks (one per slot body)
followed by a single ``@__component(name, attributes)`` call. Slot bodies stay
template source; the directive compiler turns them into lazy functions.
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Tuple

from quire.exceptions import TemplateSyntaxError

# ">" inside quoted attribute values does not end the tag.
TAG = re.compile(
    r"<(?P<close>/)?x-(?P<name>[\w\-:.]+)(?=[\s/>])"
    r"(?P<attrs>(?:\"[^\"]*\"|'[^']*'|[^'\">])*?)"
    r"\s*(?P<self>/)?>",
    re.S,
)

ATTRIBUTE = re.compile(
    r"""(?P<key>[^\s=/>"']+)
        (?:\s*=\s*(?:"(?P<double>[^"]*)"|'(?P<single>[^']*)'|(?P<bare>[^\s"'>/]+)))?""",
    re.S | re.X,
)

ECHO = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.S)

VERBATIM = re.compile(r"(@verbatim.*?@endverbatim)", re.S)

DYNAMIC_COMPONENT = "dynamic-component"

DEFAULT_SLOT = "__default"


def _is_slot(name: str) -> bool:
    return name == "slot" or name.startswith("slot:")


class ComponentTagCompiler:
    """Lowers component tags; aliases are owned by the instance."""

    def __init__(self, aliases: Optional[Mapping[str, str]] = None):
        self._aliases: Dict[str, str] = dict(aliases or {})
        self._template: Optional[str] = None

    def alias(self, alias: str, component: str) -> None:
        """Resolve ``<x-{alias}>`` to ``component``."""
        self._aliases[alias] = component

    def resolve_name(self, name: str) -> str:
        """Map a tag name to a dotted component name."""
        if name in self._aliases:
            return self._aliases[name]
        return name.replace("::", ".").replace("-", ".")

    def compile(self, source: str, template: Optional[str] = None) -> str:
        """Lower every component tag outside ``@verbatim`` blocks."""
        self._template = template
        parts = VERBATIM.split(source)
        # Odd indices are the captured verbatim blocks.
        return "".join(
            part if i % 2 else self._compile(part) for i, part in enumerate(parts)
        )

    def parse_attributes(self, text: str) -> Dict[str, str]:
        """Parse a tag's attribute text into ``key -> Python expression``.

        ``:key="expr"`` keeps ``expr`` as code, ``key="value"`` becomes a
        string (with ``{{ }}`` echoes concatenated in) and a bare ``key`` is
        ``True``. Namespaced keys such as ``wire:click`` or ``@click`` are kept
        whole. ``::key`` produces a literal ``:key`` attribute.
        """
        attributes: Dict[str, str] = {}
        for match in ATTRIBUTE.finditer(text):
            key = match.group("key")
            value = match.group("double")
            if value is None:
                value = match.group("single")
            if value is None:
                value = match.group("bare")

            if key.startswith("::"):
                attributes[key[1:]] = self._static_value(value)
            elif key.startswith(":"):
                if value is None:
                    raise TemplateSyntaxError(
                        f"attribute {key} needs a value", self._template
                    )
                attributes[key[1:]] = value.strip()
            elif value is None:
                attributes[key] = "True"
            else:
                attributes[key] = self._static_value(value)
        return attributes

    # ------------------------------------------------------------------

    def _compile(self, source: str) -> str:
        out: List[str] = []
        pos = 0

        while True:
            match = TAG.search(source, pos)
            if match is None:
                break

            name = match.group("name")
            if match.group("close") or _is_slot(name):
                out.append(source[pos : match.end()])
                pos = match.end()
                continue

            out.append(source[pos : match.start()])
            attributes = self.parse_attributes(match.group("attrs"))

            if match.group("self"):
                out.append(self._emit(name, attributes, "", {}))
                pos = match.end()
                continue

            close = self._find_close(source, match.end(), name)
            default, slots = self._split_slots(source[match.end() : close.start()])
            out.append(self._emit(name, attributes, default, slots))
            pos = close.end()

        out.append(source[pos:])
        return "".join(out)

    def _find_close(self, source: str, start: int, name: str) -> re.Match[str]:
        slot = _is_slot(name)
        depth = 1
        for match in TAG.finditer(source, start):
            other = match.group("name")
            same = _is_slot(other) if slot else other == name
            if not same or match.group("self"):
                continue
            if match.group("close"):
                depth -= 1
                if depth == 0:
                    return match
            else:
                depth += 1
        raise TemplateSyntaxError(f"unclosed component tag <x-{name}>", self._template)

    def _split_slots(self, body: str) -> Tuple[str, Dict[str, str]]:
        """Split a component body into default content and named slots."""
        default: List[str] = []
        slots: Dict[str, str] = {}
        pos = 0

        while True:
            match = TAG.search(body, pos)
            if match is None:
                break

            name = match.group("name")
            opening = not match.group("close")

            if opening and _is_slot(name):
                default.append(body[pos : match.start()])
                slot_name = self._slot_name(match)
                if match.group("self"):
                    slots[slot_name] = ""
                    pos = match.end()
                    continue
                close = self._find_close(body, match.end(), name)
                slots[slot_name] = body[match.end() : close.start()]
                pos = close.end()
            elif opening and not match.group("self"):
                # Slots of a nested component belong to that component.
                close = self._find_close(body, match.end(), name)
                default.append(body[pos : close.end()])
                pos = close.end()
            else:
                default.append(body[pos : match.end()])
                pos = match.end()

        default.append(body[pos:])
        return "".join(default), slots

    def _slot_name(self, match: re.Match[str]) -> str:
        name = match.group("name")
        if name.startswith("slot:"):
            slot_name = name[len("slot:") :]
        else:
            attrs = {
                m.group("key"): m.group("double") or m.group("single") or m.group("bare")
                for m in ATTRIBUTE.finditer(match.group("attrs"))
            }
            slot_name = attrs.get("name") or ""
        if not slot_name:
            raise TemplateSyntaxError("<x-slot> without a name", self._template)
        return slot_name.replace("-", "_")

    def _emit(
        self,
        name: str,
        attributes: Dict[str, str],
        default: str,
        slots: Dict[str, str],
    ) -> str:
        if name == DYNAMIC_COMPONENT:
            component = attributes.pop("component", None)
            if component is None:
                raise TemplateSyntaxError(
                    "<x-dynamic-component> requires a :component attribute",
                    self._template,
                )
        else:
            component = repr(self.resolve_name(name))

        parts = []
        for slot_name, body in slots.items():
            parts.append(f"@__slot({slot_name!r}){self._compile(body.strip())}@__endslot")

        default = default.strip()
        if default:
            parts.append(f"@__slot({DEFAULT_SLOT!r}){self._compile(default)}@__endslot")

        literal = ", ".join(f"{key!r}: {value}" for key, value in attributes.items())
        parts.append(f"@__component({component}, {{{literal}}})")
        return "".join(parts)

    @staticmethod
    def _static_value(value: str) -> str:
        pieces = []
        pos = 0
        for match in ECHO.finditer(value):
            if match.start() > pos:
                pieces.append(repr(value[pos : match.start()]))
            pieces.append(f"str({match.group(1)})")
            pos = match.end()
        if pos < len(value) or not pieces:
            pieces.append(repr(value[pos:]))
        return " + ".join(pieces)
