"""
Expression AST for attribute expressions.

Supports:
- Variable references: $vars.count, $vars.user.address.city, $vars.items[0]
- Loop and resident bindings: item.price, index, owner.displayName
- Arithmetic: +, -, *, /, %
- Comparison: ==, !=, ===, !==, <, >, <=, >=
- Logic: &&, ||, !
- Allow-listed accessors: .length, .includes(x), .toLowerCase(), .toUpperCase(), .trim()
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class BinaryOp(StrEnum):
    """Binary operators for expressions."""

    # Arithmetic
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    # Comparison
    EQ = "=="
    NE = "!="
    STRICT_EQ = "==="
    STRICT_NE = "!=="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    # Logical
    AND = "&&"
    OR = "||"


class UnaryOp(StrEnum):
    """Unary operators for expressions."""

    NEG = "-"
    POS = "+"
    NOT = "!"


ALLOWED_METHODS: frozenset[str] = frozenset({"includes", "toLowerCase", "toUpperCase", "trim"})

# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------


class Literal(BaseModel):
    """A literal value: number, string, boolean, or None (null/undefined)."""

    value: int | float | str | bool | None = Field(description="The literal value")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.value is None:
            return "null"
        if isinstance(self.value, str):
            return f'"{self.value}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


class VarRef(BaseModel):
    """
    Reference to a declared template variable.

    Examples:
        - VarRef(name="count") → $vars.count
    """

    name: str = Field(description="Variable name")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"$vars.{self.name}"


class Identifier(BaseModel):
    """A bare name bound by a loop scope or by resident data."""

    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return self.name


class MemberExpr(BaseModel):
    """Property access: object.name."""

    object: Expr
    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.object}.{self.name}"


class IndexExpr(BaseModel):
    """Bracket access: object[index]."""

    object: Expr
    index: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.object}[{self.index}]"


class MethodCall(BaseModel):
    """Call of an allow-listed method: object.method(args)."""

    object: Expr
    method: str = Field(description="One of ALLOWED_METHODS")
    args: list[Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.object}.{self.method}({args_str})"


class BinaryExpr(BaseModel):
    """Binary operation: left op right."""

    op: BinaryOp
    left: Expr
    right: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


class UnaryExpr(BaseModel):
    """Unary operation: op operand."""

    op: UnaryOp
    operand: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.op.value}{self.operand}"


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

Expr = Literal | VarRef | Identifier | MemberExpr | IndexExpr | MethodCall | BinaryExpr | UnaryExpr

# Rebuild models for recursive forward references
MemberExpr.model_rebuild()
IndexExpr.model_rebuild()
MethodCall.model_rebuild()
BinaryExpr.model_rebuild()
UnaryExpr.model_rebuild()


def iter_children(expr: Expr) -> list[Expr]:
    """Direct sub-expressions of a node."""
    if isinstance(expr, MemberExpr):
        return [expr.object]
    if isinstance(expr, IndexExpr):
        return [expr.object, expr.index]
    if isinstance(expr, MethodCall):
        return [expr.object, *expr.args]
    if isinstance(expr, BinaryExpr):
        return [expr.left, expr.right]
    if isinstance(expr, UnaryExpr):
        return [expr.operand]
    return []
