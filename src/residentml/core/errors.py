"""
Error types for residentml compilation, evaluation, actions and hydration.

Every error carries an ``ErrorKind`` so callers can branch on the failure
category without string matching, and an optional ``ErrorContext`` pointing
at the offending markup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure categories shared by all residentml errors."""

    # Compile-time
    UNKNOWN_TAG = "UnknownTag"
    UNDECLARED_VARIABLE = "UndeclaredVariable"
    DUPLICATE_VARIABLE = "DuplicateVariable"
    CYCLIC_COMPUTED = "CyclicComputed"
    INVALID_EXPRESSION = "InvalidExpression"
    INVALID_ATTRIBUTE = "InvalidAttribute"
    LIMIT_EXCEEDED = "LimitExceeded"

    # Evaluation and actions
    UNKNOWN_VARIABLE = "UnknownVariable"
    INVALID_OPERATION = "InvalidOperation"
    TYPE_MISMATCH = "TypeMismatch"
    READONLY_VARIABLE = "ReadOnlyVariable"

    # Hydration
    COMPONENT_NOT_FOUND = "ComponentNotFound"
    MOUNT_THREW = "MountThrew"
    CONTAINER_NOT_FOUND = "ContainerNotFound"


@dataclass
class ErrorContext:
    """
    Source location for an error.

    Attributes:
        line: Line number (1-indexed)
        column: Column number (1-indexed)
        snippet: Optional markup excerpt around the error
        source: Optional name of the template or file
    """

    line: int
    column: int
    snippet: str | None = None
    source: str | None = None

    def format(self) -> str:
        location = f"{self.line}:{self.column}"
        if self.source:
            location = f"{self.source}:{location}"
        if self.snippet:
            return f"{location}\n{self._format_snippet()}"
        return location

    def _format_snippet(self) -> str:
        """Format snippet lines with line numbers and a marker under the column."""
        if not self.snippet:
            return ""

        formatted = []
        start_line = max(1, self.line - 2)
        for i, text in enumerate(self.snippet.split("\n")):
            line_num = start_line + i
            prefix = f"{line_num:4d} | "
            formatted.append(prefix + text)
            if line_num == self.line:
                formatted.append(" " * (len(prefix) + self.column - 1) + "^^^")
        return "\n".join(formatted)


class ResidentMLError(Exception):
    """Base exception for all residentml errors."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.kind = kind
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.context:
            return f"{self.context.format()}: [{self.kind}] {self.message}"
        return f"[{self.kind}] {self.message}"

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"kind": str(self.kind), "message": self.message}
        if self.context:
            data["line"] = self.context.line
            data["column"] = self.context.column
        return data


class CompileError(ResidentMLError):
    """
    Raised or collected when markup cannot be compiled.

    Examples:
    - Tag outside the registry
    - Variable referenced before its declaration
    - Computed variables that depend on each other
    - Markup over the configured size limits
    """


class EvalError(ResidentMLError):
    """
    Raised when an expression cannot be evaluated.

    Renderers catch it and degrade to an empty value; it never aborts a page.
    """


class ActionError(ResidentMLError):
    """
    Raised when an action cannot be applied to the variable store.

    Aborts the remaining actions of the current event firing only.
    """


class HydrationError(ResidentMLError):
    """
    Raised when an island cannot be mounted.

    Isolated per island, except ContainerNotFound which fails the whole pass.
    """


def make_compile_error(
    message: str,
    kind: ErrorKind,
    line: int | None = None,
    column: int | None = None,
    snippet: str | None = None,
) -> CompileError:
    """
    Helper to create a CompileError with optional location.

    Args:
        message: Error description
        kind: Failure category
        line: Optional line number
        column: Optional column number
        snippet: Optional markup excerpt

    Returns:
        CompileError with context if a location was provided
    """
    if line is not None and column is not None:
        return CompileError(message, kind, ErrorContext(line=line, column=column, snippet=snippet))
    return CompileError(message, kind)
