"""
Condition attributes shared by If, ElseIf, Show, When and conditional actions.

Supported attributes (names are case-insensitive):

    data / condition     path or expression whose value is tested
    equals, notEquals, greaterThan, lessThan, greaterThanOrEqual,
    lessThanOrEqual, contains, startsWith, endsWith, matches
                         one comparison against the data value
    exists               "" (data exists), "true"/"false", or a path
    when                 "true", "false", "!path", "has:path", or a path
    and / or             comma-separated paths, each tested for truthiness
    not                  path that must be falsy ("" negates data)

Every check that is present must pass; ``and``/``or`` lists short-circuit.
Paths may be ``$vars.x.y``, a loop binding (``item.name``), a resident data
key (``owner.displayName``), or a bare variable name. ``.length`` of a
missing value is 0.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from residentml.core.errors import EvalError
from residentml.core.expression_lang.evaluator import (
    evaluate,
    get_index,
    get_member,
    stringify,
    to_number,
)
from residentml.core.expression_lang.scope import EvalScope

logger = logging.getLogger(__name__)

PATH_RE = re.compile(r"^(\$vars\.)?[A-Za-z_]\w*(?:\.\w+|\[\d+\])*$")
_SEGMENT_RE = re.compile(r"\.(\w+)|\[(\d+)\]")

# Checked in this order; the first present operator is applied
COMPARISON_OPERATORS: tuple[str, ...] = (
    "notequals",
    "greaterthanorequal",
    "lessthanorequal",
    "greaterthan",
    "lessthan",
    "contains",
    "startswith",
    "endswith",
    "matches",
    "equals",
)

CONDITION_ATTRIBUTES: frozenset[str] = frozenset(
    {"data", "condition", "when", "exists", "and", "or", "not", *COMPARISON_OPERATORS}
)

MAX_PATTERN_LENGTH = 200
MAX_SUBJECT_LENGTH = 2000

# A quantified group that itself contains a quantifier, e.g. (a+)+ or (\w*x)*
_NESTED_QUANTIFIER = re.compile(r"\((?:[^()\\]|\\.)*[*+}](?:[^()\\]|\\.)*\)[*+{]")


def is_truthy(value: Any) -> bool:
    """Condition truthiness: unlike expressions, an empty array is false."""
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, str):
        return value != ""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return True


def resolve_path(path: str, scope: EvalScope) -> Any:
    """Resolve a condition path, falling back to expression evaluation."""
    path = path.strip()
    if not path:
        return None
    if not PATH_RE.match(path):
        try:
            return evaluate(path, scope)
        except EvalError as e:
            logger.debug("Condition expression %r degraded to null: %s", path, e.message)
            return None

    if path.startswith("$vars."):
        path = path[len("$vars.") :]
        head, rest = _split_head(path)
        if not scope.variables.has(head):
            return _walk(None, rest)
        return _walk(scope.variables.get(head), rest)

    head, rest = _split_head(path)
    found, value = scope.lookup_local(head)
    if found:
        return _walk(value, rest)
    if head in scope.resident:
        return _walk(scope.resident[head], rest)
    if scope.variables.has(head):
        return _walk(scope.variables.get(head), rest)
    return _walk(None, rest)


def _split_head(path: str) -> tuple[str, str]:
    match = re.match(r"[A-Za-z_]\w*", path)
    assert match is not None
    return match.group(0), path[match.end() :]


def _walk(value: Any, rest: str) -> Any:
    for member, index in _SEGMENT_RE.findall(rest):
        if value is None:
            return 0 if member == "length" else None
        value = get_member(value, member) if member else get_index(value, int(index))
    return value


def compare(value: Any, operator: str, operand: str | None) -> bool:
    """Apply one comparison attribute; a missing value only satisfies notEquals."""
    if value is None:
        return operator == "notequals"
    if operand is None:
        return False

    if operator == "equals":
        return stringify(value) == operand
    if operator == "notequals":
        return stringify(value) != operand

    if operator in ("greaterthan", "lessthan", "greaterthanorequal", "lessthanorequal"):
        left, right = to_number(value), to_number(operand)
        if left is None or right is None or isinstance(value, (list, dict)):
            return False
        if operator == "greaterthan":
            return left > right
        if operator == "lessthan":
            return left < right
        if operator == "greaterthanorequal":
            return left >= right
        return left <= right

    text = stringify(value)
    if operator == "contains":
        return operand in text
    if operator == "startswith":
        return text.startswith(operand)
    if operator == "endswith":
        return text.endswith(operand)
    if operator == "matches":
        if len(operand) > MAX_PATTERN_LENGTH or len(text) > MAX_SUBJECT_LENGTH:
            return False
        if _NESTED_QUANTIFIER.search(operand):
            logger.warning("Pattern %r rejected: nested quantifiers", operand)
            return False
        try:
            return re.search(operand, text) is not None
        except re.error:
            return False
    return False


def evaluate_when(condition: str, scope: EvalScope) -> bool:
    condition = condition.strip()
    if not condition:
        return False
    if condition == "true":
        return True
    if condition == "false":
        return False
    if condition.startswith("!"):
        return not evaluate_when(condition[1:], scope)
    if condition.startswith("has:"):
        value = resolve_path(condition[4:], scope)
        return value is not None and is_truthy(value)
    return is_truthy(resolve_path(condition, scope))


def _split_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def evaluate_condition(attributes: Mapping[str, str], scope: EvalScope) -> bool:
    """Evaluate the condition attributes of a node. No checks at all is false."""
    attrs = {key.lower(): value for key, value in attributes.items()}
    checked = False

    if "and" in attrs:
        checked = True
        if not all(is_truthy(resolve_path(p, scope)) for p in _split_list(attrs["and"])):
            return False

    if "or" in attrs:
        checked = True
        if not any(is_truthy(resolve_path(p, scope)) for p in _split_list(attrs["or"])):
            return False

    data_path = attrs.get("data") or attrs.get("condition")

    if "not" in attrs:
        checked = True
        target = attrs["not"] or data_path
        if target is None or is_truthy(resolve_path(target, scope)):
            return False

    if "when" in attrs:
        checked = True
        if not evaluate_when(attrs["when"], scope):
            return False

    if data_path:
        value = resolve_path(data_path, scope)
        operator = next((op for op in COMPARISON_OPERATORS if op in attrs), None)
        if operator is not None:
            checked = True
            if not compare(value, operator, attrs[operator]):
                return False
        elif "exists" in attrs:
            checked = True
            expected = attrs["exists"].strip().lower()
            if expected in ("", "true"):
                if value is None:
                    return False
            elif expected == "false":
                if value is not None:
                    return False
            elif resolve_path(attrs["exists"], scope) is None:
                return False
        elif "not" not in attrs or attrs["not"]:
            checked = True
            if not is_truthy(value):
                return False
    elif attrs.get("exists"):
        checked = True
        if resolve_path(attrs["exists"], scope) is None:
            return False

    return checked


def condition_variable_paths(attributes: Mapping[str, str]) -> list[str]:
    """Paths and expressions a condition reads, for dependency checks."""
    attrs = {key.lower(): value for key, value in attributes.items()}
    paths: list[str] = []
    for key in ("data", "condition"):
        if attrs.get(key):
            paths.append(attrs[key])
    for key in ("and", "or"):
        if attrs.get(key):
            paths.extend(_split_list(attrs[key]))
    if attrs.get("not"):
        paths.append(attrs["not"])
    if attrs.get("when"):
        when = attrs["when"].lstrip("!")
        if when.startswith("has:"):
            when = when[4:]
        if when not in ("true", "false"):
            paths.append(when)
    exists = attrs.get("exists", "").strip().lower()
    if exists and exists not in ("true", "false"):
        paths.append(attrs["exists"])
    return paths
