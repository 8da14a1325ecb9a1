"""
Static analysis of expressions: which variables and names an expression reads.

Used by the compiler to reject forward references and by the variable store
to derive computed-variable dependencies.
"""

from __future__ import annotations

from residentml.core.expression_lang.parser import parse_expr
from residentml.core.ir.expressions import Expr, Identifier, VarRef, iter_children


def _walk(expr: Expr) -> list[Expr]:
    nodes: list[Expr] = []
    stack = [expr]
    while stack:
        node = stack.pop()
        nodes.append(node)
        stack.extend(iter_children(node))
    return nodes


def extract_variable_names(expr: Expr | str) -> set[str]:
    """Names read through ``$vars.<name>``.

    >>> sorted(extract_variable_names("$vars.price * $vars.quantity"))
    ['price', 'quantity']
    """
    if isinstance(expr, str):
        expr = parse_expr(expr)
    return {node.name for node in _walk(expr) if isinstance(node, VarRef)}


def extract_identifiers(expr: Expr | str) -> set[str]:
    """Bare names (loop bindings or resident data keys) an expression reads."""
    if isinstance(expr, str):
        expr = parse_expr(expr)
    return {node.name for node in _walk(expr) if isinstance(node, Identifier)}
