"""Attributes bag - the non-prop attributes passed to a component.

Rendered into a template with ``{{ $attributes }}``; the bag implements
``__html__`` so the escape function emits it as-is.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from markupsafe import escape


def class_list(classes: Any) -> str:
    """Build a class string from a list of names or a ``{name: condition}`` dict."""
    if isinstance(classes, str):
        return classes
    if isinstance(classes, Mapping):
        names = [name for name, enabled in classes.items() if enabled is ... or enabled]
    else:
        names = []
        for item in classes:
            if isinstance(item, Mapping):
                names.extend(name for name, enabled in item.items() if enabled is ... or enabled)
            elif item:
                names.append(str(item))
    return " ".join(str(name) for name in names)


class AttributesBag:
    """Ordered ``name -> value`` mapping that renders as HTML attributes."""

    def __init__(self, attributes: Optional[Mapping[str, Any]] = None):
        self._attributes: Dict[str, Any] = dict(attributes or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._attributes

    def merge(self, defaults: Optional[Mapping[str, Any]] = None) -> "AttributesBag":
        """Return a new bag of ``defaults`` overridden by this bag.

        ``class`` values are concatenated (defaults first); any other key
        present in this bag replaces the default.
        """
        merged: Dict[str, Any] = dict(defaults or {})
        for key, value in self._attributes.items():
            if key == "class" and merged.get("class"):
                merged["class"] = f"{merged['class']} {value}".strip()
            else:
                merged[key] = value
        return AttributesBag(merged)

    def class_(self, classes: Any) -> "AttributesBag":
        """Return a new bag with conditional classes appended to ``class``."""
        extra = class_list(classes)
        current = self._attributes.get("class")
        attributes = dict(self._attributes)
        attributes["class"] = f"{current} {extra}".strip() if current else extra
        return AttributesBag(attributes)

    def only(self, *keys: str) -> "AttributesBag":
        return AttributesBag({k: v for k, v in self._attributes.items() if k in keys})

    def except_(self, *keys: str) -> "AttributesBag":
        return AttributesBag({k: v for k, v in self._attributes.items() if k not in keys})

    def filter(self, predicate: Callable[[str, Any], bool]) -> "AttributesBag":
        return AttributesBag({k: v for k, v in self._attributes.items() if predicate(k, v)})

    def where_starts_with(self, prefix: str) -> "AttributesBag":
        return self.filter(lambda key, _: key.startswith(prefix))

    def where_doesnt_start_with(self, prefix: str) -> "AttributesBag":
        return self.filter(lambda key, _: not key.startswith(prefix))

    def first(self, *keys: str) -> Any:
        """Value of the first present key among ``keys``, else of the first attribute."""
        for key in keys:
            if key in self._attributes:
                return self._attributes[key]
        if keys:
            return None
        return next(iter(self._attributes.values()), None)

    def prepend(self, key: str, value: str) -> "AttributesBag":
        current = self._attributes.get(key)
        attributes = dict(self._attributes)
        attributes[key] = f"{value} {current}".strip() if current else value
        return AttributesBag(attributes)

    def append(self, key: str, value: str) -> "AttributesBag":
        current = self._attributes.get(key)
        attributes = dict(self._attributes)
        attributes[key] = f"{current} {value}".strip() if current else value
        return AttributesBag(attributes)

    def keys(self):
        return self._attributes.keys()

    def items(self) -> Iterable[Tuple[str, Any]]:
        return self._attributes.items()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._attributes)

    def to_html(self) -> str:
        """Render as ``key="value"`` pairs; ``True`` is a bare key, ``False``/``None`` are dropped."""
        parts = []
        for key, value in self._attributes.items():
            if value is True:
                parts.append(str(escape(key)))
            elif value is not False and value is not None:
                parts.append(f'{escape(key)}="{escape(value)}"')
        return " ".join(parts)

    def __html__(self) -> str:
        return self.to_html()

    def __str__(self) -> str:
        return self.to_html()

    def __getitem__(self, key: str) -> Any:
        return self._attributes[key]

    def __contains__(self, key: object) -> bool:
        return key in self._attributes

    def __iter__(self) -> Iterator[str]:
        return iter(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def __bool__(self) -> bool:
        return bool(self._attributes)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AttributesBag):
            return self._attributes == other._attributes
        return NotImplemented

    def __repr__(self) -> str:
        return f"AttributesBag({self._attributes!r})"


def split_props(declared: Any, bound: Mapping[str, Any]) -> Tuple[Dict[str, Any], AttributesBag]:
    """Split ``bound`` into declared props and an attributes bag.

    Args:
        declared: Prop names (list) or ``{name: default}`` mapping.
        bound: Every attribute passed to the component.

    Returns:
        ``(props, attributes)``; absent props get their declared default
        (``None`` for list declarations).
    """
    if isinstance(declared, Mapping):
        props: Dict[str, Any] = {
            name: None if default is ... else default for name, default in declared.items()
        }
    else:
        props = {name: None for name in declared}

    attributes: Dict[str, Any] = {}
    for key, value in bound.items():
        if key in props:
            props[key] = value
        else:
            attributes[key] = value
    return props, AttributesBag(attributes)
