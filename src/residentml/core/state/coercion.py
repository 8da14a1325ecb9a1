"""
Type rules for variable values.

``coerce_value`` applies the declared type to values written by actions and
inputs; ``parse_initial`` turns ``Var`` attribute strings into values;
``matches_type`` validates values read back from storage.
"""

from __future__ import annotations

import json
import math
from typing import Any

from residentml.core.errors import ActionError, ErrorKind
from residentml.core.expression_lang.evaluator import is_number, normalize_number, stringify
from residentml.core.ir.variables import VariableType

_TRUE_STRINGS = frozenset({"true", "1"})
_FALSE_STRINGS = frozenset({"false", "0", ""})


def _mismatch(name: str, var_type: VariableType, value: Any) -> ActionError:
    return ActionError(
        f"Cannot assign {type(value).__name__} {value!r} to {var_type} variable '{name}'",
        ErrorKind.TYPE_MISMATCH,
    )


def coerce_value(var_type: VariableType, value: Any, name: str = "?") -> Any:
    """Apply the declared type to ``value``.

    Raises:
        ActionError: TypeMismatch when no conversion applies.
    """
    if var_type == VariableType.NUMBER:
        if is_number(value):
            if isinstance(value, float) and not math.isfinite(value):
                raise _mismatch(name, var_type, value)
            return normalize_number(value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return 0
            try:
                number = float(text)
            except ValueError:
                raise _mismatch(name, var_type, value) from None
            if not math.isfinite(number):
                raise _mismatch(name, var_type, value)
            return normalize_number(number)
        raise _mismatch(name, var_type, value)

    if var_type == VariableType.STRING:
        if isinstance(value, (list, dict)):
            raise _mismatch(name, var_type, value)
        return stringify(value)

    if var_type == VariableType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return value.strip().lower() in _TRUE_STRINGS
        if is_number(value) and value in (0, 1):
            return bool(value)
        raise _mismatch(name, var_type, value)

    if var_type == VariableType.ARRAY:
        if isinstance(value, (list, tuple)):
            return list(value)
        raise _mismatch(name, var_type, value)

    if var_type == VariableType.OBJECT:
        if value is None or isinstance(value, dict):
            return value
        raise _mismatch(name, var_type, value)

    # computed, urlParam: any JSON-compatible value
    return value


def matches_type(var_type: VariableType, value: Any) -> bool:
    """Whether a stored value is acceptable for the declared type without conversion."""
    if var_type == VariableType.NUMBER:
        return is_number(value)
    if var_type == VariableType.STRING:
        return isinstance(value, str)
    if var_type == VariableType.BOOLEAN:
        return isinstance(value, bool)
    if var_type == VariableType.ARRAY:
        return isinstance(value, list)
    if var_type == VariableType.OBJECT:
        return value is None or isinstance(value, dict)
    return True


def parse_initial(var_type: VariableType, raw: str | None) -> Any:
    """Parse a ``Var initial=...`` attribute.

    Raises:
        ValueError: If ``raw`` does not parse for the declared type.
    """
    if var_type == VariableType.NUMBER:
        if raw is None or not raw.strip():
            return 0
        number = float(raw)
        if not math.isfinite(number):
            raise ValueError(f"{raw!r} is not a finite number")
        return normalize_number(number)

    if var_type == VariableType.STRING:
        return raw or ""

    if var_type == VariableType.BOOLEAN:
        return (raw or "").strip().lower() in _TRUE_STRINGS

    if var_type == VariableType.ARRAY:
        if raw is None or not raw.strip():
            return []
        value = json.loads(raw)
        if not isinstance(value, list):
            raise ValueError(f"{raw!r} is not a JSON array")
        return value

    if var_type == VariableType.OBJECT:
        if raw is None or not raw.strip():
            return {}
        value = json.loads(raw)
        if not isinstance(value, dict):
            raise ValueError(f"{raw!r} is not a JSON object")
        return value

    return None


def coerce_url_param(raw: str, coerce: str | None, separator: str = ",") -> Any:
    """Convert a query-string value according to ``Var coerce=...``."""
    if coerce == "number":
        try:
            return normalize_number(float(raw))
        except ValueError:
            return None
    if coerce == "boolean":
        return raw.strip().lower() == "true"
    if coerce == "array":
        return [part.strip() for part in raw.split(separator or ",")]
    return raw
