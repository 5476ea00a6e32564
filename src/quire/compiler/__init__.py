"""Template compiler.

Two passes run in order: :class:`ComponentTagCompiler` lowers ``<x-...>``
tags into internal directives, then :class:`DirectiveCompiler` lowers
comments, echoes and directives and generates Python source.
"""

from quire.compiler.codegen import CodeGenerator, echo, raw_echo, statement
from quire.compiler.directives import DirectiveCompiler, DirectiveHandler
from quire.compiler.expressions import lower_expression, split_arguments
from quire.compiler.tags import ComponentTagCompiler

__all__ = [
    "CodeGenerator",
    "ComponentTagCompiler",
    "DirectiveCompiler",
    "DirectiveHandler",
    "echo",
    "lower_expression",
    "raw_echo",
    "split_arguments",
    "statement",
]
