"""
Pure collection helpers behind Filter, Sort, Transform, Find, Sum, Count,
ObjectSet and Extract.

None of these mutate their input. Per-item expressions see ``item``,
``index`` and ``i`` bound in a child scope on top of the caller's scope.
"""

from __future__ import annotations

import copy
from functools import cmp_to_key
from typing import Any

from residentml.core.expression_lang.evaluator import (
    evaluate,
    is_number,
    is_truthy,
    normalize_number,
    stringify,
    to_number,
)
from residentml.core.expression_lang.scope import EvalScope
from residentml.core.ir.expressions import Expr


def item_scope(scope: EvalScope, item: Any, index: int) -> EvalScope:
    return scope.child(item=item, index=index, i=index)


def filter_items(items: list[Any], where: Expr, scope: EvalScope) -> list[Any]:
    return [
        copy.deepcopy(item)
        for index, item in enumerate(items)
        if is_truthy(evaluate(where, item_scope(scope, item, index)))
    ]


def find_item(items: list[Any], where: Expr, scope: EvalScope) -> Any:
    for index, item in enumerate(items):
        if is_truthy(evaluate(where, item_scope(scope, item, index))):
            return copy.deepcopy(item)
    return None


def transform_items(items: list[Any], expression: Expr, scope: EvalScope) -> list[Any]:
    return [
        copy.deepcopy(evaluate(expression, item_scope(scope, item, index)))
        for index, item in enumerate(items)
    ]


def count_items(items: list[Any], where: Expr | None, scope: EvalScope) -> int:
    if where is None:
        return len(items)
    return sum(
        1
        for index, item in enumerate(items)
        if is_truthy(evaluate(where, item_scope(scope, item, index)))
    )


def sum_items(items: list[Any], prop: str | None = None) -> int | float:
    """Sum items (or ``item.<prop>``); values without a numeric form are skipped."""
    total: int | float = 0
    for item in items:
        value = get_path(item, prop) if prop else item
        if value is None or isinstance(value, bool):
            continue
        number = to_number(value)
        if number is not None:
            total += number
    return normalize_number(total)


def _compare_keys(a: Any, b: Any) -> int:
    if is_number(a) and is_number(b):
        return (a > b) - (a < b)
    sa, sb = stringify(a), stringify(b)
    return (sa > sb) - (sa < sb)


def sort_items(
    items: list[Any],
    by: Expr | None,
    scope: EvalScope,
    order: str = "asc",
) -> list[Any]:
    """Stable sort by the ``by`` expression; null keys always sort last."""
    keyed = []
    for index, item in enumerate(items):
        key = evaluate(by, item_scope(scope, item, index)) if by is not None else item
        keyed.append((key, item))

    present = [pair for pair in keyed if pair[0] is not None]
    missing = [pair for pair in keyed if pair[0] is None]
    present.sort(
        key=cmp_to_key(lambda x, y: _compare_keys(x[0], y[0])),
        reverse=order == "desc",
    )
    return [copy.deepcopy(item) for _, item in present + missing]


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    """``"a.b[0].c"`` → ``["a", "b", "0", "c"]``."""
    normalized = path.replace("[", ".").replace("]", "")
    return [segment for segment in normalized.split(".") if segment]


def get_path(value: Any, path: str) -> Any:
    """Read a dot path; a missing or null segment yields None."""
    current = value
    for segment in split_path(path):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            position = int(segment)
            current = current[position] if position < len(current) else None
        elif segment == "length" and isinstance(current, (list, str)):
            current = len(current)
        else:
            return None
    return current


def set_path(value: Any, path: str, new_value: Any) -> Any:
    """Return a copy of ``value`` with ``path`` replaced.

    Containers along the path are copied; everything else is shared with the
    original, which is never modified. Missing intermediate objects are created.
    """
    segments = split_path(path)
    if not segments:
        return copy.deepcopy(new_value)
    return _set_path(value, segments, copy.deepcopy(new_value))


def _set_path(current: Any, segments: list[str], new_value: Any) -> Any:
    head, rest = segments[0], segments[1:]

    if isinstance(current, list) and head.isdigit():
        updated_list = list(current)
        position = int(head)
        while len(updated_list) <= position:
            updated_list.append(None)
        updated_list[position] = (
            _set_path(updated_list[position], rest, new_value) if rest else new_value
        )
        return updated_list

    updated = dict(current) if isinstance(current, dict) else {}
    updated[head] = _set_path(updated.get(head), rest, new_value) if rest else new_value
    return updated
