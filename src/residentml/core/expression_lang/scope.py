"""
Evaluation scopes.

An ``EvalScope`` combines three sources of names:

- template variables, read through ``$vars.<name>``
- local bindings pushed by ForEach and collection actions (``item``, ``index``)
- resident data supplied by the hosting page (``owner``, ``viewer``, ``posts``)

Child scopes shadow their parent's locals without touching them, so nested
loops never leak bindings into sibling iterations.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from residentml.core.errors import ErrorKind, EvalError


@runtime_checkable
class VariableReader(Protocol):
    """Read access to declared variables (the variable store implements it)."""

    def has(self, name: str) -> bool: ...

    def get(self, name: str) -> Any: ...


class MappingVariables:
    """Adapts a plain mapping to ``VariableReader``."""

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._values = values

    def has(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str) -> Any:
        return self._values[name]


_EMPTY: Mapping[str, Any] = {}


class EvalScope:
    """Name resolution context for one evaluation."""

    __slots__ = ("variables", "resident", "_bindings", "_parent")

    def __init__(
        self,
        variables: VariableReader | None = None,
        resident: Mapping[str, Any] | None = None,
        bindings: Mapping[str, Any] | None = None,
        parent: EvalScope | None = None,
    ) -> None:
        self.variables = variables if variables is not None else MappingVariables(_EMPTY)
        self.resident = resident if resident is not None else _EMPTY
        self._bindings = dict(bindings or {})
        self._parent = parent

    def child(self, **bindings: Any) -> EvalScope:
        """New scope whose locals shadow this one's."""
        return EvalScope(self.variables, self.resident, bindings, parent=self)

    def lookup_local(self, name: str) -> tuple[bool, Any]:
        scope: EvalScope | None = self
        while scope is not None:
            if name in scope._bindings:
                return True, scope._bindings[name]
            scope = scope._parent
        return False, None

    def locals(self) -> dict[str, Any]:
        """Flattened local bindings, innermost wins."""
        chain: list[EvalScope] = []
        scope: EvalScope | None = self
        while scope is not None:
            chain.append(scope)
            scope = scope._parent
        merged: dict[str, Any] = {}
        for s in reversed(chain):
            merged.update(s._bindings)
        return merged

    def read_variable(self, name: str) -> Any:
        if not self.variables.has(name):
            raise EvalError(f"Unknown variable '$vars.{name}'", ErrorKind.UNKNOWN_VARIABLE)
        return self.variables.get(name)

    def resolve_identifier(self, name: str) -> Any:
        found, value = self.lookup_local(name)
        if found:
            return value
        if name in self.resident:
            return self.resident[name]
        raise EvalError(f"Unknown identifier '{name}'", ErrorKind.UNKNOWN_VARIABLE)

    def has_name(self, name: str) -> bool:
        return self.lookup_local(name)[0] or name in self.resident


def as_scope(source: EvalScope | VariableReader | Mapping[str, Any] | None) -> EvalScope:
    """Coerce a store, a mapping of variable values, or a scope into an ``EvalScope``."""
    if isinstance(source, EvalScope):
        return source
    if source is None:
        return EvalScope()
    if isinstance(source, Mapping):
        return EvalScope(MappingVariables(source))
    if isinstance(source, VariableReader):
        return EvalScope(source)
    raise TypeError(f"Cannot build an evaluation scope from {type(source).__name__}")
