"""
``{name}`` placeholders in text and attribute values.

Inside ForEach bodies and action attributes authors write ``{item.name}`` or
``index="{idx}"``; the head of the path must be a local binding. Anything
else is left untouched, so literal braces in prose survive.
"""

from __future__ import annotations

import re
from typing import Any

from residentml.core.expression_lang.evaluator import get_index, get_member, stringify
from residentml.core.expression_lang.scope import EvalScope

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_]\w*(?:\.\w+|\[\d+\])*)\}")
_SEGMENT_RE = re.compile(r"\.(\w+)|\[(\d+)\]")


def resolve_local_path(path: str, scope: EvalScope) -> tuple[bool, Any]:
    """Resolve ``head.rest`` where ``head`` is a local binding."""
    head_match = re.match(r"[A-Za-z_]\w*", path)
    if head_match is None:
        return False, None
    found, value = scope.lookup_local(head_match.group(0))
    if not found:
        return False, None
    for member, index in _SEGMENT_RE.findall(path[head_match.end() :]):
        value = get_member(value, member) if member else get_index(value, int(index))
    return True, value


def has_placeholders(text: str) -> bool:
    return PLACEHOLDER_RE.search(text) is not None


def interpolate(text: str, scope: EvalScope) -> str:
    """Replace placeholders whose head is bound; leave the rest as written."""

    def replace(match: re.Match[str]) -> str:
        found, value = resolve_local_path(match.group(1), scope)
        return stringify(value) if found else match.group(0)

    return PLACEHOLDER_RE.sub(replace, text)


def interpolate_value(text: str, scope: EvalScope) -> Any:
    """Like ``interpolate`` but a lone placeholder keeps the bound value's type."""
    match = PLACEHOLDER_RE.fullmatch(text.strip())
    if match:
        found, value = resolve_local_path(match.group(1), scope)
        if found:
            return value
    return interpolate(text, scope)
