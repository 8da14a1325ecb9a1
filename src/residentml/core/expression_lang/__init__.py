"""
residentml expression language.

Tokenizer, parser, evaluator and dependency analysis for the restricted
expressions used inside template attributes.

Usage:
    from residentml.core.expression_lang import evaluate, parse_expr

    expr = parse_expr("$vars.price * $vars.quantity")
    result = evaluate(expr, {"price": 100, "quantity": 2})
    # result == 200
"""

from residentml.core.expression_lang.analysis import extract_identifiers, extract_variable_names
from residentml.core.expression_lang.conditions import evaluate_condition, resolve_path
from residentml.core.expression_lang.evaluator import (
    compile_expression,
    evaluate,
    is_truthy,
    safe_evaluate,
    stringify,
)
from residentml.core.expression_lang.parser import ExpressionParseError, parse_expr
from residentml.core.expression_lang.scope import EvalScope, MappingVariables, as_scope

__all__ = [
    "EvalScope",
    "ExpressionParseError",
    "MappingVariables",
    "as_scope",
    "compile_expression",
    "evaluate",
    "evaluate_condition",
    "extract_identifiers",
    "extract_variable_names",
    "is_truthy",
    "parse_expr",
    "resolve_path",
    "safe_evaluate",
    "stringify",
]
