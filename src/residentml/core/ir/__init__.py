"""
residentml intermediate representation.

Frozen pydantic models shared by the compiler, the renderer and the
hydration runtime.
"""

from residentml.core.ir.actions import (
    EVENT_TAGS,
    ActionInvocation,
    ActionKind,
    ActionStep,
    ConditionalActions,
    ConditionalBranch,
    EventBinding,
    EventKind,
    SequenceActions,
    SequenceStep,
    SwitchActions,
    SwitchCase,
)
from residentml.core.ir.expressions import (
    ALLOWED_METHODS,
    BinaryExpr,
    BinaryOp,
    Expr,
    Identifier,
    IndexExpr,
    Literal,
    MemberExpr,
    MethodCall,
    UnaryExpr,
    UnaryOp,
    VarRef,
)
from residentml.core.ir.template import (
    FRAGMENT_TAG,
    ISLAND_TAG,
    ROOT_TAG,
    TEXT_TAG,
    CompilationStats,
    CompiledTemplate,
    Island,
    IslandKind,
    SourceSpan,
    TemplateNode,
)
from residentml.core.ir.variables import VariableSpec, VariableType

__all__ = [
    # Actions
    "ActionInvocation",
    "ActionKind",
    "ActionStep",
    "ConditionalActions",
    "ConditionalBranch",
    "EVENT_TAGS",
    "EventBinding",
    "EventKind",
    "SequenceActions",
    "SequenceStep",
    "SwitchActions",
    "SwitchCase",
    # Expressions
    "ALLOWED_METHODS",
    "BinaryExpr",
    "BinaryOp",
    "Expr",
    "Identifier",
    "IndexExpr",
    "Literal",
    "MemberExpr",
    "MethodCall",
    "UnaryExpr",
    "UnaryOp",
    "VarRef",
    # Template
    "CompilationStats",
    "CompiledTemplate",
    "FRAGMENT_TAG",
    "ISLAND_TAG",
    "Island",
    "IslandKind",
    "ROOT_TAG",
    "SourceSpan",
    "TEXT_TAG",
    "TemplateNode",
    # Variables
    "VariableSpec",
    "VariableType",
]
