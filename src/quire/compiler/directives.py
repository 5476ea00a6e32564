"""Directive compiler - lowers template source into Python source.

Passes run in a fixed order; each one only sees the output of the previous:

1. protect ``@verbatim`` and ``@python`` blocks behind placeholders
2. strip ``{{-- --}}`` comments
3. lower ``{{ }}`` / ``{!! !!}`` echoes
4. lower ``@directives`` in a single left-to-right scan
5. restore protected blocks (raw code first, verbatim while emitting)
6. generate Python source
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from quire.compiler.codegen import SLOT_FUNCTION_PREFIX, CodeGenerator, echo, raw_echo, statement
from quire.compiler.expressions import lower_expression, split_arguments
from quire.exceptions import TemplateSyntaxError

DirectiveHandler = Callable[[str], str]

VERBATIM_BLOCK = re.compile(r"@verbatim(.*?)@endverbatim", re.S)
PYTHON_BLOCK = re.compile(r"@python(?!\s*\()(.*?)@endpython", re.S)
COMMENT = re.compile(r"\{\{--.*?--\}\}", re.S)
ESCAPED_ECHO = re.compile(r"(?<!@)\{\{\s*(.+?)\s*\}\}", re.S)
RAW_ECHO = re.compile(r"\{!!\s*(.+?)\s*!!\}", re.S)

# Existing markers are skipped so expressions inside echoes stay untouched.
# Internal component directives may directly follow a word character.
SCAN = re.compile(
    r"(?P<marker><\?py.*?\?>)"
    r"|(?:(?<!\w)|(?=@__(?:slot|endslot|component)\b))"
    r"@(?P<escape>@?)(?P<name>[A-Za-z_]\w*)",
    re.S,
)

LOOP_HEAD = re.compile(
    r"^\s*(?P<iterable>.+?)\s+as\s+(?P<first>\$?\w+)(?:\s*=>\s*(?P<second>\$?\w+))?\s*$",
    re.S,
)


@dataclass
class _Block:
    """An open construct whose lowering depends on later directives."""

    kind: str
    var: str = ""
    opened: bool = False


@dataclass
class _CompileState:
    """Per-call compiler state; compile() stays reentrant and pure."""

    template: Optional[str]
    digest: str
    verbatim: Dict[str, str] = field(default_factory=dict)
    python: Dict[str, str] = field(default_factory=dict)
    blocks: List[_Block] = field(default_factory=list)
    pending_slots: List[List[Tuple[str, str]]] = field(default_factory=lambda: [[]])
    counter: int = 0

    def next_id(self) -> int:
        self.counter += 1
        return self.counter


def _match_parens(content: str, start: int) -> int:
    """Return the index of the parenthesis closing the one at ``start``.

    Nested parentheses and string literals are honoured. Returns -1 when the
    opening parenthesis is never closed.
    """
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(content):
        ch = content[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "'\"":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


class DirectiveCompiler:
    """Compiles template source to Python source.

    Custom directives are registered per instance, either through the
    constructor or :meth:`directive`. A handler receives the raw text between
    the directive's parentheses ("" when absent) and returns lowered markup,
    usually built with :func:`quire.compiler.statement`,
    :func:`quire.compiler.echo` or :func:`quire.compiler.raw_echo`.
    """

    def __init__(self, directives: Optional[Mapping[str, DirectiveHandler]] = None):
        self._custom: Dict[str, DirectiveHandler] = dict(directives or {})
        self._codegen = CodeGenerator()
        self._state: Optional[_CompileState] = None
        self._builtins: Dict[str, Callable[[str], str]] = {
            # Control flow
            "if": lambda e: statement(f"if {self._expr(e)}:"),
            "elseif": lambda e: statement(f"elif {self._expr(e)}:"),
            "else": lambda e: statement("else:"),
            "endif": lambda e: statement("end"),
            "unless": lambda e: statement(f"if not ({self._expr(e)}):"),
            "endunless": lambda e: statement("end"),
            "isset": lambda e: statement(f"if __view.isset(lambda: {self._expr(e)}):"),
            "endisset": lambda e: statement("end"),
            "empty": lambda e: statement(f"if __view.is_empty(lambda: {self._expr(e)}):"),
            "endempty": lambda e: statement("end"),
            # Switch
            "switch": self._compile_switch,
            "case": self._compile_case,
            "default": self._compile_default,
            "break": self._compile_break,
            "endswitch": self._compile_endswitch,
            # Loops
            "foreach": self._compile_foreach,
            "endforeach": self._compile_endforeach,
            "forelse": self._compile_forelse,
            "endforelse": self._compile_endforelse,
            "for": self._compile_for,
            "endfor": self._compile_endloop,
            "while": self._compile_while,
            "endwhile": self._compile_endloop,
            "continue": self._compile_continue,
            # Layout
            "extends": lambda e: statement(f"__view.extends({self._expr(e)})"),
            "section": self._compile_section,
            "endsection": lambda e: statement("__view.end_section()"),
            "stop": lambda e: statement("__view.end_section()"),
            "overwrite": lambda e: statement("__view.end_section(overwrite=True)"),
            "show": lambda e: raw_echo("__view.yield_section()"),
            "yield": lambda e: raw_echo(f"__view.yield_content({self._expr(e)})"),
            "parent": lambda e: raw_echo("__view.parent_placeholder()"),
            "hasSection": lambda e: statement(f"if __view.has_section({self._expr(e)}):"),
            "sectionMissing": lambda e: statement(
                f"if not __view.has_section({self._expr(e)}):"
            ),
            "include": lambda e: raw_echo(f"__view.include({self._expr(e)})"),
            "includeIf": lambda e: raw_echo(f"__view.include_if({self._expr(e)})"),
            "includeWhen": lambda e: raw_echo(f"__view.include_when({self._expr(e)})"),
            "includeUnless": lambda e: raw_echo(
                f"__view.include_unless({self._expr(e)})"
            ),
            "includeFirst": lambda e: raw_echo(f"__view.include_first({self._expr(e)})"),
            # Components
            "component": lambda e: statement(f"__view.start_component({self._expr(e)})"),
            "endcomponent": lambda e: raw_echo("__view.render_component()"),
            "slot": lambda e: statement(f"__view.slot({self._expr(e)})"),
            "endslot": lambda e: statement("__view.end_slot()"),
            "props": lambda e: statement(
                f"globals().update(__view.extract_props({self._expr(e) or '{}'}, __props))"
            ),
            "__slot": self._compile_tag_slot,
            "__endslot": self._compile_tag_endslot,
            "__component": self._compile_tag_component,
            # Stacks
            "push": lambda e: statement(f"__view.start_push({self._expr(e)})"),
            "endpush": lambda e: statement("__view.end_push()"),
            "prepend": lambda e: statement(f"__view.start_prepend({self._expr(e)})"),
            "endprepend": lambda e: statement("__view.end_prepend()"),
            "pushOnce": lambda e: statement(f"if __view.start_push_once({self._expr(e)}):"),
            "endPushOnce": lambda e: statement("__view.end_push()\nend"),
            "stack": lambda e: raw_echo(f"__view.render_stack({self._expr(e)})"),
            # Forms
            "method": lambda e: raw_echo(f"__view.method_field({self._expr(e)})"),
            "error": self._compile_error,
            "enderror": lambda e: statement("end"),
            "checked": lambda e: self._compile_attribute("checked", e),
            "selected": lambda e: self._compile_attribute("selected", e),
            "disabled": lambda e: self._compile_attribute("disabled", e),
            "readonly": lambda e: self._compile_attribute("readonly", e),
            "required": lambda e: self._compile_attribute("required", e),
            "class": lambda e: raw_echo(
                f"'class=\"' + __view.class_list({self._expr(e)}) + '\"'"
            ),
            # Other
            "json": lambda e: raw_echo(f"__view.to_json({self._expr(e)})"),
            "once": self._compile_once,
            "endonce": lambda e: statement("end"),
            "env": lambda e: statement(f"if __view.environment_is({self._expr(e)}):"),
            "endenv": lambda e: statement("end"),
            "production": lambda e: statement("if __view.environment_is('production'):"),
            "endproduction": lambda e: statement("end"),
            "dump": lambda e: raw_echo(f"__view.dump({self._expr(e)})"),
            "python": lambda e: statement(lower_expression(e, multiline=True)),
        }

    def directive(self, name: str, handler: DirectiveHandler) -> None:
        """Register a custom directive for this compiler instance."""
        self._custom[name] = handler

    @property
    def directives(self) -> List[str]:
        """Names of every directive this compiler lowers."""
        return sorted(set(self._builtins) | set(self._custom))

    def compile(self, source: str, template: Optional[str] = None) -> str:
        """Compile template source to Python source.

        Args:
            source: Template source, with component tags already lowered.
            template: Template name, only used in error messages.

        Returns:
            Python module source.
        """
        digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]
        state = _CompileState(template=template, digest=digest)
        previous, self._state = self._state, state
        try:
            content = self._extract_verbatim(source)
            content = self._extract_python(content)
            content = self.compile_comments(content)
            content = self.compile_echos(content)
            content = self.compile_directives(content)
            content = self._restore_python(content)
            return self._codegen.generate(content, state.verbatim, template)
        finally:
            self._state = previous

    # ------------------------------------------------------------------
    # Protected blocks
    # ------------------------------------------------------------------

    def _extract_verbatim(self, content: str) -> str:
        state = self._state

        def replace(match: re.Match[str]) -> str:
            key = f"__VERBATIM_{len(state.verbatim)}__"
            state.verbatim[key] = match.group(1)
            return key

        return VERBATIM_BLOCK.sub(replace, content)

    def _extract_python(self, content: str) -> str:
        state = self._state

        def replace(match: re.Match[str]) -> str:
            key = f"__PYTHON_BLOCK_{len(state.python)}__"
            state.python[key] = match.group(1)
            return key

        return PYTHON_BLOCK.sub(replace, content)

    def _restore_python(self, content: str) -> str:
        for key, code in self._state.python.items():
            content = content.replace(key, f"<?python\n{code}\n?>")
        return content

    # ------------------------------------------------------------------
    # Comments and echoes
    # ------------------------------------------------------------------

    @staticmethod
    def compile_comments(content: str) -> str:
        """Remove ``{{-- --}}`` comments."""
        return COMMENT.sub("", content)

    def compile_echos(self, content: str) -> str:
        """Lower escaped and raw echoes; ``@{{`` becomes a literal ``{{``."""
        content = ESCAPED_ECHO.sub(lambda m: echo(self._expr(m.group(1))), content)
        content = RAW_ECHO.sub(lambda m: raw_echo(self._expr(m.group(1))), content)
        return content.replace("@{{", "{{")

    # ------------------------------------------------------------------
    # Directives
    # ------------------------------------------------------------------

    def compile_directives(self, content: str) -> str:
        """Lower every registered ``@directive`` in document order."""
        out: List[str] = []
        pos = 0

        while True:
            match = SCAN.search(content, pos)
            if match is None:
                out.append(content[pos:])
                break

            out.append(content[pos : match.start()])
            pos = match.end()

            if match.group("marker"):
                out.append(match.group("marker"))
                continue

            name = match.group("name")
            handler = self._custom.get(name) or self._builtins.get(name)

            if handler is None:
                out.append(match.group(0))
                continue
            if match.group("escape"):
                out.append(f"@{name}")
                continue

            expression: Optional[str] = None
            lookahead = pos
            while lookahead < len(content) and content[lookahead] in " \t":
                lookahead += 1
            if lookahead < len(content) and content[lookahead] == "(":
                close = _match_parens(content, lookahead)
                if close == -1:
                    raise TemplateSyntaxError(
                        f"unbalanced parentheses after @{name}", self._state.template
                    )
                expression = content[lookahead + 1 : close]
                pos = close + 1

            # A bare @empty closes the loop part of a @forelse.
            if name == "empty" and expression is None and name not in self._custom:
                out.append(self._compile_forelse_empty())
                continue

            out.append(handler(expression or ""))

        return "".join(out)

    def _expr(self, expression: str) -> str:
        return lower_expression(expression)

    def _push(self, kind: str, var: str = "") -> _Block:
        block = _Block(kind=kind, var=var)
        self._state.blocks.append(block)
        return block

    def _pop(self, *kinds: str) -> Optional[_Block]:
        blocks = self._state.blocks
        for i in range(len(blocks) - 1, -1, -1):
            if blocks[i].kind in kinds:
                return blocks.pop(i)
        return None

    def _innermost(self, *kinds: str) -> Optional[_Block]:
        for block in reversed(self._state.blocks):
            if block.kind in kinds:
                return block
        return None

    def _syntax_error(self, message: str) -> TemplateSyntaxError:
        return TemplateSyntaxError(message, self._state.template)

    # Switch. A case body runs once an earlier case matched and no @break
    # was hit, so stacked cases fall through into the next body.

    def _compile_switch(self, expression: str) -> str:
        var = f"__switch_{self._state.next_id()}"
        self._push("switch", var)
        return statement(
            f"{var} = {self._expr(expression)}\n{var}_matched = False\n{var}_done = False"
        )

    def _switch_block(self, directive: str) -> _Block:
        block = self._innermost("switch")
        if block is None:
            raise self._syntax_error(f"@{directive} outside of @switch")
        return block

    def _switch_arm(self, block: _Block, test: str) -> str:
        lines = ["end"] if block.opened else []
        block.opened = True
        lines.append(f"if not {block.var}_done and ({block.var}_matched or {test}):")
        lines.append(f"{block.var}_matched = True")
        return statement("\n".join(lines))

    def _compile_case(self, expression: str) -> str:
        block = self._switch_block("case")
        return self._switch_arm(block, f"{block.var} == ({self._expr(expression)})")

    def _compile_default(self, expression: str) -> str:
        return self._switch_arm(self._switch_block("default"), "True")

    def _compile_break(self, expression: str) -> str:
        block = self._innermost("switch", "loop", "slot")
        if block is not None and block.kind == "slot":
            raise self._syntax_error("@break cannot leave a component slot")
        if block is not None and block.kind == "switch":
            leave = f"{block.var}_done = True"
        else:
            leave = "break"
        if expression.strip():
            return statement(f"if {self._expr(expression)}: {leave}")
        return statement(leave)

    def _compile_endswitch(self, expression: str) -> str:
        block = self._pop("switch")
        if block is None:
            raise self._syntax_error("@endswitch without @switch")
        return statement("end") if block.opened else ""

    # Loops

    def _parse_loop_head(self, expression: str) -> Tuple[str, str]:
        match = LOOP_HEAD.match(expression)
        if match is None:
            raise self._syntax_error(f"invalid loop expression: {expression!r}")

        first = match.group("first").lstrip("$")
        second = match.group("second")
        if second:
            target = f"{first}, {second.lstrip('$')}"
            return match.group("iterable"), target
        return match.group("iterable"), first

    def _loop_body_head(self, data_var: str, target: str, keyed: bool) -> List[str]:
        iterable = f"__view.pairs({data_var})" if keyed else data_var
        return [
            f"__view.add_loop({data_var})",
            f"for {target} in {iterable}:",
            "__view.increment_loop_indices()",
            "loop = __view.get_last_loop()",
        ]

    def _compile_foreach(self, expression: str) -> str:
        iterable, target = self._parse_loop_head(expression)
        data_var = f"__loop_data_{self._state.next_id()}"
        self._push("loop")
        lines = [f"{data_var} = {self._expr(iterable)}"]
        lines += self._loop_body_head(data_var, target, "," in target)
        return statement("\n".join(lines))

    def _compile_endforeach(self, expression: str) -> str:
        self._pop("loop")
        return statement("end\n__view.pop_loop()\nloop = __view.get_last_loop()")

    def _compile_forelse(self, expression: str) -> str:
        iterable, target = self._parse_loop_head(expression)
        loop_id = self._state.next_id()
        data_var = f"__loop_data_{loop_id}"
        empty_var = f"__forelse_empty_{loop_id}"
        self._push("loop", empty_var).opened = False
        lines = [
            f"{data_var} = __view.sized({self._expr(iterable)})",
            f"{empty_var} = not {data_var}",
            f"if not {empty_var}:",
        ]
        lines += self._loop_body_head(data_var, target, "," in target)
        return statement("\n".join(lines))

    def _compile_forelse_empty(self) -> str:
        block = self._innermost("loop")
        if block is None or not block.var:
            raise self._syntax_error("@empty outside of @forelse")
        block.opened = True
        return statement(
            "end\n__view.pop_loop()\nloop = __view.get_last_loop()\nend\n"
            f"if {block.var}:"
        )

    def _compile_endforelse(self, expression: str) -> str:
        block = self._pop("loop")
        if block is not None and block.opened:
            return statement("end")
        return statement("end\n__view.pop_loop()\nloop = __view.get_last_loop()\nend")

    def _compile_for(self, expression: str) -> str:
        self._push("loop")
        return statement(f"for {self._expr(expression)}:")

    def _compile_while(self, expression: str) -> str:
        self._push("loop")
        return statement(f"while {self._expr(expression)}:")

    def _compile_endloop(self, expression: str) -> str:
        self._pop("loop")
        return statement("end")

    def _compile_continue(self, expression: str) -> str:
        block = self._innermost("loop", "slot")
        if block is not None and block.kind == "slot":
            raise self._syntax_error("@continue cannot leave a component slot")
        if expression.strip():
            return statement(f"if {self._expr(expression)}: continue")
        return statement("continue")

    # Layout

    def _compile_section(self, expression: str) -> str:
        args = split_arguments(expression)
        if len(args) > 1:
            name = self._expr(args[0])
            content = self._expr(", ".join(args[1:]))
            return statement(f"__view.start_section({name}, __e({content}))")
        return statement(f"__view.start_section({self._expr(expression)})")

    # Components emitted by the tag compiler

    def _compile_tag_slot(self, expression: str) -> str:
        state = self._state
        fn = f"{SLOT_FUNCTION_PREFIX}{state.next_id()}"
        self._push("slot", f"{fn}:{self._expr(expression)}")
        state.pending_slots.append([])
        return statement(f"def {fn}():")

    def _compile_tag_endslot(self, expression: str) -> str:
        state = self._state
        block = self._pop("slot")
        if block is None:
            raise self._syntax_error("unbalanced component slot")
        state.pending_slots.pop()
        fn, name = block.var.split(":", 1)
        state.pending_slots[-1].append((name, fn))
        return statement("end")

    def _compile_tag_component(self, expression: str) -> str:
        args = split_arguments(expression)
        name = self._expr(args[0])
        attributes = self._expr(args[1]) if len(args) > 1 and args[1] else "{}"

        default = "''"
        named = []
        for slot_name, fn in self._state.pending_slots[-1]:
            if slot_name == "'__default'":
                default = f"__view.lazy_slot({fn})"
            else:
                named.append(f"{slot_name}: __view.lazy_slot({fn})")
        self._state.pending_slots[-1] = []

        call = f"__view.component({name}, {attributes}, {default}"
        if named:
            call += ", {" + ", ".join(named) + "}"
        return raw_echo(call + ")")

    # Forms and misc

    def _compile_error(self, expression: str) -> str:
        return statement(
            f"message = __view.error_for(globals().get('errors'), {self._expr(expression)})\n"
            "if message is not None:"
        )

    def _compile_attribute(self, attribute: str, expression: str) -> str:
        condition = statement(f"if {self._expr(expression)}:")
        return f"{condition} {attribute}{statement('end')}"

    def _compile_once(self, expression: str) -> str:
        key = self._expr(expression) if expression.strip() else None
        if key is None:
            key = repr(f"{self._state.digest}:{self._state.next_id()}")
        return statement(f"if __view.once({key}):")
