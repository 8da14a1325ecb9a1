"""
Reactive variable store.

One store exists per template instance. It owns variable values, keeps
computed variables consistent with their dependencies, persists
``persist=true`` variables, and notifies subscribers.

Consistency rule: a write and the recomputation of every computed variable
that depends on it happen before any subscriber runs, so no reader ever sees
a dependency updated while its computed value is stale.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from residentml.core.errors import ActionError, CompileError, ErrorKind, EvalError
from residentml.core.expression_lang.analysis import extract_variable_names
from residentml.core.expression_lang.evaluator import compile_expression, evaluate
from residentml.core.expression_lang.parser import DEFAULT_MAX_NODES
from residentml.core.expression_lang.scope import EvalScope
from residentml.core.ir.expressions import Expr
from residentml.core.ir.variables import VariableSpec, VariableType
from residentml.core.state.coercion import coerce_url_param, coerce_value, matches_type
from residentml.core.state.storage import KeyValueStorage

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ChangeCallback = Callable[[frozenset[str]], None]

MAX_PERSIST_BYTES = 100 * 1024
MAX_UPDATE_DEPTH = 20


class VariableStore:
    """
    Typed variables with dependency-tracked computed values.

    Example:
        store = VariableStore()
        store.declare(VariableSpec(name="price", type=VariableType.NUMBER, initial=100))
        store.declare(VariableSpec(name="quantity", type=VariableType.NUMBER, initial=2))
        store.declare(
            VariableSpec(name="total", type=VariableType.COMPUTED,
                         expression="$vars.price * $vars.quantity")
        )
        store.set("quantity", 3)
        store.get("total")  # 300
    """

    def __init__(
        self,
        variables: Iterable[VariableSpec] = (),
        *,
        storage: KeyValueStorage | None = None,
        scope: str = "default",
        url_params: Mapping[str, str] | None = None,
        resident: Mapping[str, Any] | None = None,
        max_persist_bytes: int = MAX_PERSIST_BYTES,
        max_expression_nodes: int = DEFAULT_MAX_NODES,
    ) -> None:
        self.storage = storage
        self.scope = scope
        self.url_params = dict(url_params or {})
        self.resident = resident if resident is not None else {}
        self.max_persist_bytes = max_persist_bytes
        self.max_expression_nodes = max_expression_nodes

        self._specs: dict[str, VariableSpec] = {}
        self._values: dict[str, Any] = {}
        self._computed: dict[str, Expr] = {}  # in dependency order
        self._subscribers: dict[str, list[ValueCallback]] = {}
        self._change_subscribers: list[ChangeCallback] = []
        self._pending: set[str] = set()
        self._batch_depth = 0
        self._update_depth = 0

        self.declare_all(variables)

    # -- Declaration --

    def declare(self, spec: VariableSpec) -> None:
        """Declare a variable and seed its value.

        Raises:
            CompileError: DuplicateVariable, UndeclaredVariable (computed reading
                an unknown variable), CyclicComputed, InvalidExpression.
        """
        if spec.name in self._specs:
            raise CompileError(
                f"Variable '{spec.name}' is declared twice", ErrorKind.DUPLICATE_VARIABLE
            )

        if spec.type == VariableType.COMPUTED:
            self._declare_computed(spec)
            return

        self._specs[spec.name] = spec
        if spec.type == VariableType.URL_PARAM:
            self._values[spec.name] = self._url_param_value(spec)
        else:
            self._values[spec.name] = self._seed_value(spec)

    def declare_all(self, specs: Iterable[VariableSpec]) -> None:
        """Declare several variables; computed ones may appear in any order."""
        specs = list(specs)
        computed = {s.name: s for s in specs if s.type == VariableType.COMPUTED}
        for spec in specs:
            if spec.type != VariableType.COMPUTED:
                self.declare(spec)
        for name in _topological_order(computed, self.max_expression_nodes):
            self.declare(computed[name])

    def _declare_computed(self, spec: VariableSpec) -> None:
        if not spec.expression:
            raise CompileError(
                f"Computed variable '{spec.name}' has no expression", ErrorKind.INVALID_ATTRIBUTE
            )
        try:
            expr = compile_expression(spec.expression, max_nodes=self.max_expression_nodes)
        except EvalError as e:
            raise CompileError(e.message, ErrorKind.INVALID_EXPRESSION) from e

        dependencies = sorted(extract_variable_names(expr))
        if spec.name in dependencies:
            raise CompileError(
                f"Computed variable '{spec.name}' depends on itself", ErrorKind.CYCLIC_COMPUTED
            )
        missing = [d for d in dependencies if d not in self._specs]
        if missing:
            raise CompileError(
                f"Computed variable '{spec.name}' reads undeclared {', '.join(missing)}",
                ErrorKind.UNDECLARED_VARIABLE,
            )

        spec = spec.model_copy(update={"dependencies": dependencies})
        self._specs[spec.name] = spec
        self._computed[spec.name] = expr
        self._values[spec.name] = self._evaluate_computed(spec.name)

    def _seed_value(self, spec: VariableSpec) -> Any:
        initial = copy.deepcopy(spec.initial)
        if not (spec.persist and self.storage is not None):
            return initial

        raw = self.storage.get(self.scope, spec.name)
        if raw is None:
            return initial
        try:
            stored = json.loads(raw)
        except ValueError:
            logger.warning(
                "Stored value for '%s' is not valid JSON; using initial value", spec.name
            )
            return initial
        if not matches_type(spec.type, stored):
            logger.warning(
                "Stored value for '%s' is not a %s; using initial value", spec.name, spec.type
            )
            return initial
        return stored

    def _url_param_value(self, spec: VariableSpec) -> Any:
        raw = self.url_params.get(spec.param or spec.name)
        if raw is not None:
            value = coerce_url_param(raw, spec.coerce, spec.separator)
            if value is not None:
                return value
        if isinstance(spec.default, str):
            return coerce_url_param(spec.default, spec.coerce, spec.separator)
        if spec.default is not None:
            return copy.deepcopy(spec.default)
        return copy.deepcopy(spec.initial)

    # -- Read access --

    def has(self, name: str) -> bool:
        return name in self._specs

    def get(self, name: str) -> Any:
        """Current value. The returned object must be treated as read-only."""
        if name not in self._specs:
            raise EvalError(f"Unknown variable '{name}'", ErrorKind.UNKNOWN_VARIABLE)
        return self._values[name]

    def spec(self, name: str) -> VariableSpec:
        if name not in self._specs:
            raise ActionError(f"Unknown variable '{name}'", ErrorKind.UNKNOWN_VARIABLE)
        return self._specs[name]

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(self._specs)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of all current values."""
        return copy.deepcopy(self._values)

    # -- Writes --

    def set(self, name: str, value: Any) -> bool:
        """Assign a variable, recompute dependents, persist, notify.

        Returns:
            True if the value changed.

        Raises:
            ActionError: UnknownVariable, ReadOnlyVariable (urlParam and computed;
                the store is left unchanged), TypeMismatch.
        """
        spec = self.spec(name)
        if spec.is_readonly:
            raise ActionError(
                f"Variable '{name}' is read-only ({spec.type})", ErrorKind.READONLY_VARIABLE
            )
        if not spec.implicit:
            value = coerce_value(spec.type, value, name)
        coerced = copy.deepcopy(value)
        return self._assign(spec, coerced, persist=True)

    def reset(self, name: str) -> bool:
        """Restore the initial value and drop any stored copy."""
        spec = self.spec(name)
        if spec.is_readonly:
            raise ActionError(
                f"Variable '{name}' is read-only ({spec.type})", ErrorKind.READONLY_VARIABLE
            )
        if spec.persist and self.storage is not None:
            self.storage.delete(self.scope, name)
        return self._assign(spec, copy.deepcopy(spec.initial), persist=False)

    def reset_all(self) -> None:
        with self.batch():
            for name, spec in self._specs.items():
                if not spec.is_readonly:
                    self.reset(name)

    def _assign(self, spec: VariableSpec, value: Any, *, persist: bool) -> bool:
        if self._update_depth >= MAX_UPDATE_DEPTH:
            logger.error(
                "Update depth for '%s' exceeded %d; possible update cycle",
                spec.name,
                MAX_UPDATE_DEPTH,
            )
            raise ActionError(
                f"Update depth exceeded while setting '{spec.name}'", ErrorKind.INVALID_OPERATION
            )

        if _same_value(self._values.get(spec.name), value):
            return False

        self._values[spec.name] = value
        if persist and spec.persist:
            self._persist(spec.name, value)

        changed = {spec.name}
        self._recompute_dependents(changed)
        self._pending |= changed
        if self._batch_depth == 0:
            self._flush()
        return True

    def _persist(self, name: str, value: Any) -> None:
        if self.storage is None:
            return
        encoded = json.dumps(value)
        if len(encoded.encode("utf-8")) > self.max_persist_bytes:
            logger.warning(
                "Value for '%s' exceeds %d bytes; not persisted", name, self.max_persist_bytes
            )
            return
        try:
            self.storage.set(self.scope, name, encoded)
        except (OSError, sqlite3.Error):
            logger.exception("Failed to persist variable '%s'", name)

    # -- Computed variables --

    def _evaluate_computed(self, name: str) -> Any:
        try:
            return evaluate(self._computed[name], EvalScope(self, self.resident))
        except EvalError as e:
            logger.warning("Computed variable '%s' evaluated to null: %s", name, e.message)
            return None

    def _recompute_dependents(self, dirty: set[str]) -> None:
        """Single pass in dependency order; ``dirty`` grows with changed computeds."""
        for name in self._computed:
            if dirty.isdisjoint(self._specs[name].dependencies):
                continue
            value = self._evaluate_computed(name)
            if not _same_value(self._values.get(name), value):
                self._values[name] = value
                dirty.add(name)

    # -- Subscriptions --

    def subscribe(self, name: str, callback: ValueCallback) -> Callable[[], None]:
        """Call ``callback(value)`` after each change of ``name``; returns an unsubscribe."""
        self.spec(name)
        self._subscribers.setdefault(name, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(name, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback(changed_names)`` once per flushed update."""
        self._change_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._change_subscribers:
                self._change_subscribers.remove(callback)

        return unsubscribe

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Defer notifications until the outermost batch exits."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._pending:
                self._flush()

    def _flush(self) -> None:
        changed = frozenset(self._pending)
        self._pending.clear()
        self._update_depth += 1
        try:
            for name in self._specs:
                if name not in changed:
                    continue
                for callback in list(self._subscribers.get(name, [])):
                    self._notify(callback, self._values[name], name)
            for change_callback in list(self._change_subscribers):
                self._notify(change_callback, changed, "*")
        finally:
            self._update_depth -= 1

    @staticmethod
    def _notify(callback: Callable[[Any], None], payload: Any, name: str) -> None:
        try:
            callback(payload)
        except ActionError:
            raise
        except Exception:
            logger.exception("Subscriber for '%s' raised", name)


def _same_value(old: Any, new: Any) -> bool:
    if type(old) is not type(new):
        return False
    return bool(old == new)


def _topological_order(computed: Mapping[str, VariableSpec], max_nodes: int) -> list[str]:
    """Order computed declarations so dependencies come first.

    Raises:
        CompileError: CyclicComputed naming the cycle.
    """
    deps: dict[str, list[str]] = {}
    for name, spec in computed.items():
        if not spec.expression:
            deps[name] = []
            continue
        try:
            expr = compile_expression(spec.expression, max_nodes=max_nodes)
        except EvalError as e:
            raise CompileError(e.message, ErrorKind.INVALID_EXPRESSION) from e
        deps[name] = sorted(d for d in extract_variable_names(expr) if d in computed)

    order: list[str] = []
    state: dict[str, int] = {}  # 1 = visiting, 2 = done

    def visit(name: str, path: list[str]) -> None:
        if state.get(name) == 2:
            return
        if state.get(name) == 1:
            cycle = path[path.index(name) :] + [name]
            raise CompileError(
                f"Computed variables form a cycle: {' -> '.join(cycle)}",
                ErrorKind.CYCLIC_COMPUTED,
            )
        state[name] = 1
        for dep in deps[name]:
            visit(dep, [*path, name])
        state[name] = 2
        order.append(name)

    for name in computed:
        visit(name, [])
    return order
