"""Code generator - converts lowered template markup to Python source.

The directive pass produces text interleaved with three kinds of markers:

    <?py stmt ?>        statements; a line ending in ":" opens a block and the
                        pseudo-statement ``end`` closes it
    <?py= expr ?>       write ``expr`` to the current output buffer
    <?python code ?>    raw code block, re-indented but otherwise untouched

Everything else is literal text.

Slot bodies become functions named with ``SLOT_FUNCTION_PREFIX``. Names they
bind are declared global so they read and rebind template variables
(``loop``, loop targets) the same way inline code does.
"""

from __future__ import annotations

import ast
import re
import textwrap
from typing import Dict, List, Optional

from quire.exceptions import TemplateSyntaxError

MARKER = re.compile(r"<\?py(?P<kind>thon\b|=|\b)(?P<body>.*?)\?>", re.S)

# Statements that close the current block and open a sibling one.
CONTINUATION = re.compile(r"^(elif\b.*|else\s*:|except\b.*|finally\s*:)$")

HEADER = "# Compiled by quire. Do not edit.\n"

SLOT_FUNCTION_PREFIX = "__slot_fn_"

INDENT = "    "


def statement(code: str) -> str:
    """Wrap statements in a statement marker."""
    return f"<?py {code} ?>"


def echo(expr: str) -> str:
    """Marker writing the escaped value of a Python expression."""
    return f"<?py= __e({expr}) ?>"


def raw_echo(expr: str) -> str:
    """Marker writing the value of a Python expression unescaped."""
    return f"<?py= {expr} ?>"


class CodeGenerator:
    """Renders lowered markup to Python module source."""

    def generate(
        self,
        markup: str,
        verbatim: Optional[Dict[str, str]] = None,
        template: Optional[str] = None,
    ) -> str:
        """Generate Python source for ``markup``.

        Args:
            markup: Output of the directive pass.
            verbatim: Placeholder -> literal text, restored while emitting text.
            template: Template name used in error messages.

        Returns:
            Python module source.
        """
        self._lines: List[str] = [HEADER]
        self._bodies: List[bool] = []
        self._template = template
        verbatim = verbatim or {}

        pos = 0
        eat_newline = False
        for match in MARKER.finditer(markup):
            self._emit_text(markup[pos : match.start()], verbatim, eat_newline)
            kind, body = match.group("kind"), match.group("body")

            if kind == "=":
                self._emit(f"__write({body.strip()})")
                eat_newline = False
            elif kind == "thon":
                self._emit_raw(body)
                eat_newline = True
            else:
                self._emit_statements(body)
                eat_newline = True

            pos = match.end()

        self._emit_text(markup[pos:], verbatim, eat_newline)

        if self._bodies:
            raise TemplateSyntaxError(
                f"{len(self._bodies)} unclosed block(s) at end of template",
                self._template,
            )

        return _declare_slot_globals("\n".join(self._lines) + "\n")

    def _emit(self, line: str) -> None:
        self._lines.append(INDENT * len(self._bodies) + line)
        if self._bodies:
            self._bodies[-1] = True

    def _open(self) -> None:
        self._bodies.append(False)

    def _close(self, line: str) -> None:
        if not self._bodies:
            raise TemplateSyntaxError(
                f"unexpected block end near {line!r}", self._template
            )
        if not self._bodies[-1]:
            self._emit("pass")
        self._bodies.pop()

    def _emit_text(self, text: str, verbatim: Dict[str, str], eat_newline: bool) -> None:
        # A newline directly after a statement belongs to the statement.
        if eat_newline:
            if text.startswith("\r\n"):
                text = text[2:]
            elif text.startswith("\n"):
                text = text[1:]

        if not text:
            return

        # Reverse extraction order: raw code was restored before this pass.
        for key, block in verbatim.items():
            text = text.replace(key, block)

        self._emit(f"__write({text!r})")

    def _emit_statements(self, body: str) -> None:
        for raw_line in body.splitlines():
            line = raw_line.strip()
            if not line:
                continue

            if line == "end":
                self._close(line)
            elif CONTINUATION.match(line):
                self._close(line)
                self._emit(line)
                self._open()
            elif line.endswith(":"):
                self._emit(line)
                self._open()
            else:
                self._emit(line)

    def _emit_raw(self, body: str) -> None:
        code = textwrap.dedent(body.strip("\r\n"))
        for line in code.splitlines():
            if line.strip():
                self._emit(line.rstrip())


def _declare_slot_globals(source: str) -> str:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        # Reported with a location when the engine compiles the artifact.
        return source

    inserts = []
    for node in ast.walk(tree):
        if isinstance(node, ast.FunctionDef) and node.name.startswith(SLOT_FUNCTION_PREFIX):
            names = _bound_names(node)
            if names:
                first = node.body[0]
                line = " " * first.col_offset + "global " + ", ".join(names)
                inserts.append((first.lineno - 1, line))

    lines = source.split("\n")
    for index, line in sorted(inserts, reverse=True):
        lines.insert(index, line)
    return "\n".join(lines)


_SCOPES = (
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.ClassDef,
    ast.Lambda,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
)


def _bound_names(function: ast.FunctionDef) -> List[str]:
    """Names bound directly in ``function``, skipping nested scopes."""
    names = set()
    pending: List[ast.AST] = list(function.body)
    while pending:
        node = pending.pop()
        if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            names.add(node.id)
        elif not isinstance(node, _SCOPES):
            pending.extend(ast.iter_child_nodes(node))
    return sorted(names)
