"""
residentml - a sandboxed templating engine for user-authored profile pages.

Authors write markup with custom tags for variables, conditionals, loops,
collection operations, timers and event-bound actions. The compiler turns it
into a typed AST plus a list of interactive islands; the renderer produces a
server render; the hydration runtime (``residentml_ui``) mounts the islands.
"""

from __future__ import annotations

from ._version import get_version
from .core import ir
from .core.errors import (
    ActionError,
    CompileError,
    ErrorKind,
    EvalError,
    HydrationError,
    ResidentMLError,
)
from .core.markup import compile_template
from .core.render import ControlFlowRenderer, to_html
from .core.state import ActionExecutor, VariableStore

__version__ = get_version()

__all__ = [
    "__version__",
    "ir",
    "ActionError",
    "ActionExecutor",
    "CompileError",
    "ControlFlowRenderer",
    "ErrorKind",
    "EvalError",
    "HydrationError",
    "ResidentMLError",
    "VariableStore",
    "compile_template",
    "to_html",
]
