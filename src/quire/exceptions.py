"""Quire Exceptions

Custom exceptions for template compilation and rendering.
"""

from __future__ import annotations

from pathlib import Path


class QuireError(Exception):
    """Base exception for all quire errors."""

    pass


class TemplateSyntaxError(QuireError):
    """Raised when template source cannot be lowered to valid code."""

    def __init__(self, message: str, template: str | None = None):
        self.template = template
        if template:
            message = f"{message} (in {template})"
        super().__init__(message)


class ViewError(QuireError):
    """Raised when a view cannot be rendered.

    Carries the logical template name and the location (source or compiled
    artifact) the failure is attributed to.
    """

    def __init__(
        self,
        message: str,
        template: str | None = None,
        location: str | Path | None = None,
    ):
        self.message = message
        self.template = template
        self.location = str(location) if location is not None else None
        super().__init__(message)

    def formatted(self) -> str:
        """Multi-line description for CLI output."""
        lines = [f"View Error: {self.message}"]
        if self.template:
            lines.append(f"Template: {self.template}")
        if self.location:
            lines.append(f"File: {self.location}")
        return "\n".join(lines)


class TemplateNotFoundError(ViewError):
    """Raised when a template name has no existing source."""

    def __init__(self, template: str, location: str | Path | None = None):
        message = f"Template not found: {template}"
        if location is not None:
            message = f"{message} ({location})"
        super().__init__(message, template=template, location=location)


class ViewStructureError(ViewError):
    """Raised on an unmatched begin/end of a section, slot, push or component."""

    pass


class ViewEvaluationError(ViewError):
    """Raised when compiled template code fails while rendering."""

    def __init__(
        self,
        original: BaseException,
        template: str | None = None,
        location: str | Path | None = None,
    ):
        self.original = original
        message = f"{type(original).__name__}: {original}"
        if location is not None:
            message = f"{message} (View: {location})"
        super().__init__(message, template=template, location=location)
