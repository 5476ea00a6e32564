"""Expression lowering - dialect expressions to plain Python.

Template expressions are Python expressions. For authors coming from other
template dialects the following spellings are accepted and lowered:

    $name               -> name
    $user->name         -> user.name
    a && b, a || b, !a  -> a and b, a or b, not a
    a === b, a !== b    -> a == b, a != b
    bag->class([...])   -> bag.class_([...])
    null, true, false   -> None, True, False
    ['a' => 1, 'b']     -> {'a': 1, 'b': ...}
    $x ?? 'default'     -> __view.coalesce(lambda: x, lambda: 'default')

String literals are never rewritten. Newlines between tokens are joined so a
directive argument may span lines.

``??`` binds loosest within one argument, array item, dict value or echo.
"""

from __future__ import annotations

import re
from typing import List, Tuple

_STRING = re.compile(r"""'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*\"""", re.S)

_NEWLINES = re.compile(r"\s*\n\s*")

COALESCE = "??"

_CODE_REWRITES: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"\$(?=[A-Za-z_])"), ""),
    (re.compile(r"->"), "."),
    (re.compile(r"\.(class|except)\b(?=\s*\()"), r".\1_"),
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"\s*&&\s*"), " and "),
    (re.compile(r"\s*\|\|\s*"), " or "),
    (re.compile(r"!(?!=)\s*"), "not "),
    (re.compile(r"\bnull\b"), "None"),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
]

_TOKEN = re.compile(
    r"""(?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<arrow>=>)
      | (?P<coalesce>\?\?)
      | (?P<open>[\[({])
      | (?P<close>[\])}])
      | (?P<comma>,)
      | (?P<code>(?:[^'"\[\](){},=?]|=(?!>)|\?(?!\?))+)
    """,
    re.S | re.X,
)

_PAIRS = {"[": "]", "(": ")", "{": "}"}


def split_strings(expr: str) -> List[Tuple[bool, str]]:
    """Split an expression into (is_string_literal, text) chunks."""
    chunks: List[Tuple[bool, str]] = []
    pos = 0
    for match in _STRING.finditer(expr):
        if match.start() > pos:
            chunks.append((False, expr[pos : match.start()]))
        chunks.append((True, match.group(0)))
        pos = match.end()
    if pos < len(expr):
        chunks.append((False, expr[pos:]))
    return chunks


def lower_expression(expr: str, multiline: bool = False) -> str:
    """Lower a dialect expression to a Python expression.

    With ``multiline`` set, line breaks outside string literals are kept so
    the result may hold several statements.
    """
    parts = []
    for is_string, text in split_strings(expr):
        if not is_string:
            if not multiline:
                text = _NEWLINES.sub(" ", text)
            for pattern, replacement in _CODE_REWRITES:
                text = pattern.sub(replacement, text)
        parts.append(text)
    lowered = "".join(parts)

    code = [text for is_string, text in split_strings(lowered) if not is_string]
    if any("=>" in text or COALESCE in text for text in code):
        lowered = _lower_arrays(lowered)

    return lowered.strip()


def _lower_arrays(expr: str) -> str:
    """Rewrite ``=>`` lists into dict displays and ``??`` into coalesce calls."""
    tokens = [(m.lastgroup, m.group(0)) for m in _TOKEN.finditer(expr)]
    out, _ = _lower_group(tokens, 0, None)
    return out


def _lower_group(tokens, pos: int, opener: str | None) -> Tuple[str, int]:
    items: List[List[str]] = [[]]
    arrows: List[bool] = [False]

    while pos < len(tokens):
        kind, text = tokens[pos]
        pos += 1
        if kind == "open":
            inner, pos = _lower_group(tokens, pos, text)
            items[-1].append(inner)
        elif kind == "close":
            return _join_group(opener, items, arrows, text), pos
        elif kind == "comma":
            items.append([])
            arrows.append(False)
        elif kind == "coalesce":
            items[-1].append(COALESCE)
        elif kind == "arrow":
            arrows[-1] = True
            items[-1] = ["".join(items[-1]).rstrip(), ": "]
        elif items[-1] and items[-1][-1] == ": ":
            items[-1].append(text.lstrip())
        else:
            items[-1].append(text)

    # Unbalanced input; leave it for Python to report.
    return _join_group(opener, items, arrows, ""), pos


def _join_group(opener, items, arrows, closer) -> str:
    rendered = [_render_item(item, has_arrow, opener) for item, has_arrow in zip(items, arrows)]

    if opener == "[" and any(arrows):
        entries = []
        for text, has_arrow in zip(rendered, arrows):
            stripped = text.strip()
            if not stripped:
                continue
            entries.append(stripped if has_arrow else f"{stripped}: ...")
        return "{" + ", ".join(entries) + "}"

    body = ",".join(rendered)
    if opener is None:
        return body
    return opener + body + (closer or _PAIRS[opener])


def _render_item(parts: List[str], has_arrow: bool, opener: str | None) -> str:
    head, body = (parts[:2], parts[2:]) if has_arrow else ([], parts)
    if COALESCE not in body:
        return "".join(parts)

    if opener == "{" and not has_arrow:
        # Keep the key of a dict display out of the first operand.
        for index, part in enumerate(body):
            if part == COALESCE:
                break
            if part[:1] not in "'\"([{" and ":" in part:
                key, _, rest = part.partition(":")
                head, body = body[:index] + [key + ":"], [rest] + body[index + 1 :]
                break

    operands: List[str] = []
    current: List[str] = []
    for part in body:
        if part == COALESCE:
            operands.append("".join(current))
            current = []
        else:
            current.append(part)
    operands.append("".join(current))

    lead = operands[0][: len(operands[0]) - len(operands[0].lstrip())]
    getters = ", ".join(f"lambda: {operand.strip()}" for operand in operands)
    return "".join(head) + lead + f"__view.coalesce({getters})"


def split_arguments(expr: str) -> List[str]:
    """Split an argument list on top-level commas, honouring strings and brackets."""
    args: List[str] = []
    depth = 0
    current: List[str] = []
    for is_string, text in split_strings(expr):
        if is_string:
            current.append(text)
            continue
        for ch in text:
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
            if ch == "," and depth == 0:
                args.append("".join(current).strip())
                current = []
            else:
                current.append(ch)
    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args
