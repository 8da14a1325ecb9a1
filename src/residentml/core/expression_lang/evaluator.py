"""
Expression evaluator for attribute expressions.

Evaluates expression AST nodes against an ``EvalScope``. Pure evaluation: no
I/O, no side effects, no Python ``eval()`` and no attribute access on host
objects. Only mapping keys, sequence indices and the allow-listed methods are
reachable from markup.

Operators follow the loose semantics authors expect from the browser: ``+``
concatenates when either side is a string, ``&&``/``||`` return an operand,
and ``""``, ``0``, ``null`` and ``false`` are falsy.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import Any

from residentml.core.errors import ErrorKind, EvalError
from residentml.core.expression_lang.parser import (
    DEFAULT_MAX_NODES,
    ExpressionParseError,
    parse_expr,
)
from residentml.core.expression_lang.scope import EvalScope, VariableReader, as_scope
from residentml.core.ir.expressions import (
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

logger = logging.getLogger(__name__)

ScopeLike = EvalScope | VariableReader | Mapping[str, Any] | None


def evaluate(
    expr: Expr | str,
    scope: ScopeLike = None,
    *,
    max_nodes: int = DEFAULT_MAX_NODES,
) -> Any:
    """Evaluate an expression against a scope.

    Args:
        expr: Parsed expression AST or expression source.
        scope: An ``EvalScope``, a variable store, or a mapping of variable values.
        max_nodes: AST size limit applied when ``expr`` is source text.

    Returns:
        The computed value. A null segment along a path yields None.

    Raises:
        EvalError: InvalidExpression for unparseable source, UnknownVariable for
            undeclared ``$vars`` names or unbound identifiers, InvalidOperation
            for division by zero and unsupported operand types.
    """
    if isinstance(expr, str):
        expr = compile_expression(expr, max_nodes=max_nodes)
    try:
        return _interpret(expr, as_scope(scope))
    except RecursionError as e:
        raise EvalError("Expression is nested too deeply", ErrorKind.INVALID_OPERATION) from e


def compile_expression(source: str, *, max_nodes: int = DEFAULT_MAX_NODES) -> Expr:
    """Parse ``source``, reporting grammar violations as ``EvalError``."""
    try:
        return parse_expr(source, max_nodes)
    except ExpressionParseError as e:
        raise EvalError(
            f"Invalid expression {source!r}: {e} (at {e.pos})", ErrorKind.INVALID_EXPRESSION
        ) from e


def safe_evaluate(expr: Expr | str, scope: ScopeLike = None, default: Any = None) -> Any:
    """Evaluate, degrading any ``EvalError`` to ``default``."""
    try:
        return evaluate(expr, scope)
    except EvalError as e:
        logger.debug("Expression %s degraded to default: %s", expr, e)
        return default


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """Truthiness as authors expect it: empty string, 0, NaN, null and false are falsy."""
    if value is None or value is False:
        return False
    if is_number(value):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def normalize_number(value: int | float) -> int | float:
    """Collapse integral floats to int so 2.0 displays and compares as 2."""
    if isinstance(value, float) and value.is_integer() and math.isfinite(value):
        return int(value)
    return value


def to_number(value: Any) -> int | float | None:
    """Numeric view of a value, or None when it has none."""
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return normalize_number(float(text))
        except ValueError:
            return None
    return None


def stringify(value: Any) -> str:
    """Display form of a value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(normalize_number(value))
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def loose_equals(left: Any, right: Any) -> bool:
    """``==`` semantics: numbers compare with numeric strings and booleans."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (bool, int, float, str)) and isinstance(right, (bool, int, float, str)):
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            return False
        return a == b
    return left == right


def strict_equals(left: Any, right: Any) -> bool:
    """``===`` semantics: no conversion between types."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        return left == right
    return type(left) is type(right) and left == right


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


def _interpret(expr: Expr, scope: EvalScope) -> Any:
    """Dispatch evaluation to the appropriate handler."""
    if isinstance(expr, Literal):
        return expr.value

    if isinstance(expr, VarRef):
        return scope.read_variable(expr.name)

    if isinstance(expr, Identifier):
        return scope.resolve_identifier(expr.name)

    if isinstance(expr, MemberExpr):
        return _interpret_member(expr, scope)

    if isinstance(expr, IndexExpr):
        return _interpret_index(expr, scope)

    if isinstance(expr, MethodCall):
        return _interpret_method(expr, scope)

    if isinstance(expr, BinaryExpr):
        return _interpret_binary(expr, scope)

    if isinstance(expr, UnaryExpr):
        return _interpret_unary(expr, scope)

    raise EvalError(f"Unknown expression type: {type(expr).__name__}", ErrorKind.INVALID_OPERATION)


def get_member(target: Any, name: str) -> Any:
    """Property lookup limited to mapping keys and ``length``."""
    if target is None:
        return None
    if isinstance(target, Mapping):
        return target.get(name)
    if name == "length" and isinstance(target, (str, list, tuple)):
        return len(target)
    return None


def get_index(target: Any, index: Any) -> Any:
    if target is None or index is None:
        return None
    if isinstance(target, Mapping):
        key = stringify(index) if not isinstance(index, str) else index
        return target.get(key)
    if isinstance(target, (list, tuple, str)):
        position = to_number(index)
        if position is None or not float(position).is_integer():
            return get_member(target, index) if isinstance(index, str) else None
        position = int(position)
        if 0 <= position < len(target):
            return target[position]
        return None
    return None


def _interpret_member(expr: MemberExpr, scope: EvalScope) -> Any:
    return get_member(_interpret(expr.object, scope), expr.name)


def _interpret_index(expr: IndexExpr, scope: EvalScope) -> Any:
    target = _interpret(expr.object, scope)
    if target is None:
        return None
    return get_index(target, _interpret(expr.index, scope))


def _interpret_method(expr: MethodCall, scope: EvalScope) -> Any:
    target = _interpret(expr.object, scope)
    if target is None:
        return None
    args = [_interpret(a, scope) for a in expr.args]

    if expr.method == "includes":
        if len(args) != 1:
            raise EvalError("includes() takes exactly one argument", ErrorKind.INVALID_OPERATION)
        needle = args[0]
        if isinstance(target, str):
            return stringify(needle) in target
        if isinstance(target, (list, tuple)):
            return any(strict_equals(item, needle) for item in target)
        raise EvalError(
            f"includes() is not defined for {type(target).__name__}", ErrorKind.INVALID_OPERATION
        )

    if not isinstance(target, str):
        raise EvalError(
            f"{expr.method}() is only defined for strings", ErrorKind.INVALID_OPERATION
        )
    if args:
        raise EvalError(f"{expr.method}() takes no arguments", ErrorKind.INVALID_OPERATION)
    if expr.method == "toLowerCase":
        return target.lower()
    if expr.method == "toUpperCase":
        return target.upper()
    if expr.method == "trim":
        return target.strip()

    raise EvalError(f"Method '{expr.method}' is not allowed", ErrorKind.INVALID_OPERATION)


def _interpret_binary(expr: BinaryExpr, scope: EvalScope) -> Any:
    """Evaluate a binary expression."""
    # Short-circuit for logical operators
    if expr.op == BinaryOp.AND:
        left = _interpret(expr.left, scope)
        if not is_truthy(left):
            return left
        return _interpret(expr.right, scope)

    if expr.op == BinaryOp.OR:
        left = _interpret(expr.left, scope)
        if is_truthy(left):
            return left
        return _interpret(expr.right, scope)

    left = _interpret(expr.left, scope)
    right = _interpret(expr.right, scope)

    if expr.op == BinaryOp.EQ:
        return loose_equals(left, right)
    if expr.op == BinaryOp.NE:
        return not loose_equals(left, right)
    if expr.op == BinaryOp.STRICT_EQ:
        return strict_equals(left, right)
    if expr.op == BinaryOp.STRICT_NE:
        return not strict_equals(left, right)

    if expr.op in (BinaryOp.LT, BinaryOp.GT, BinaryOp.LE, BinaryOp.GE):
        return compare(expr.op, left, right)

    if expr.op == BinaryOp.ADD and (isinstance(left, str) or isinstance(right, str)):
        return stringify(left) + stringify(right)

    # Null propagation for arithmetic
    if left is None or right is None:
        return None

    return arithmetic(expr.op, left, right)


def compare(op: BinaryOp, left: Any, right: Any) -> bool:
    """Ordering comparison; null and incomparable operands are never ordered."""
    if left is None or right is None:
        return False
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left
        b: Any = right
    else:
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            return False
    if op == BinaryOp.LT:
        return a < b
    if op == BinaryOp.GT:
        return a > b
    if op == BinaryOp.LE:
        return a <= b
    return a >= b


def arithmetic(op: BinaryOp, left: Any, right: Any) -> int | float:
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        raise EvalError(
            f"Cannot apply '{op.value}' to {type(left).__name__} and {type(right).__name__}",
            ErrorKind.INVALID_OPERATION,
        )

    if op == BinaryOp.ADD:
        return a + b
    if op == BinaryOp.SUB:
        return a - b
    if op == BinaryOp.MUL:
        return a * b
    if op == BinaryOp.DIV:
        if b == 0:
            raise EvalError("Division by zero", ErrorKind.INVALID_OPERATION)
        return normalize_number(a / b)
    if op == BinaryOp.MOD:
        if b == 0:
            raise EvalError("Modulo by zero", ErrorKind.INVALID_OPERATION)
        return normalize_number(math.fmod(a, b))

    raise EvalError(f"Unknown binary op: {op}", ErrorKind.INVALID_OPERATION)


def _interpret_unary(expr: UnaryExpr, scope: EvalScope) -> Any:
    """Evaluate a unary expression."""
    val = _interpret(expr.operand, scope)
    if expr.op == UnaryOp.NOT:
        return not is_truthy(val)
    if val is None:
        return None
    number = to_number(val)
    if number is None:
        raise EvalError(
            f"Cannot apply unary '{expr.op.value}' to {type(val).__name__}",
            ErrorKind.INVALID_OPERATION,
        )
    return -number if expr.op == UnaryOp.NEG else number
