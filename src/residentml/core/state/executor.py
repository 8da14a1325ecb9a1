"""
Action executor.

Interprets ``ActionStep`` lists against a ``VariableStore``. Each action kind
maps to one handler in a fixed registry; there is no lookup by reflection.

Within one event firing actions run in order inside a single store batch, so
subscribers observe one consistent post-update snapshot. The first failing
action aborts the rest of that firing and leaves the store consistent for
unrelated events.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from residentml.core.errors import ActionError, ErrorKind, EvalError
from residentml.core.expression_lang.conditions import evaluate_condition
from residentml.core.expression_lang.evaluator import (
    compile_expression,
    evaluate,
    stringify,
    to_number,
)
from residentml.core.expression_lang.interpolation import interpolate, interpolate_value
from residentml.core.expression_lang.scope import EvalScope
from residentml.core.ir.actions import (
    ActionInvocation,
    ActionKind,
    ActionStep,
    ConditionalActions,
    SequenceActions,
    SwitchActions,
)
from residentml.core.ir.expressions import Expr
from residentml.core.ir.variables import VariableType
from residentml.core.state import collections as coll
from residentml.core.state.store import VariableStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Toast:
    """A ShowToast effect handed to the host page."""

    message: str
    type: str = "info"
    duration_ms: int = 3000


ToastSink = Callable[[Toast], None]
SequenceScheduler = Callable[[SequenceActions, EvalScope], None]
Handler = Callable[["ActionExecutor", ActionInvocation, EvalScope], None]


class ActionExecutor:
    """
    Applies actions to one template instance's store.

    Args:
        store: The instance's variable store.
        resident_data: Read-only host data visible to expressions.
        on_toast: Receives ShowToast effects; logged when absent.
        schedule_sequence: Receives Sequence steps; they need a timer owner,
            which the hydration runtime provides.
    """

    def __init__(
        self,
        store: VariableStore,
        resident_data: Mapping[str, Any] | None = None,
        *,
        on_toast: ToastSink | None = None,
        schedule_sequence: SequenceScheduler | None = None,
    ) -> None:
        self.store = store
        self.resident_data = resident_data if resident_data is not None else store.resident
        self.on_toast = on_toast
        self.schedule_sequence = schedule_sequence

    def scope(self, bindings: Mapping[str, Any] | None = None) -> EvalScope:
        return EvalScope(self.store, self.resident_data, bindings)

    # -- Entry points --

    def execute(self, action: ActionInvocation, scope: EvalScope | None = None) -> None:
        """Apply one action.

        Raises:
            ActionError: UnknownVariable, TypeMismatch, ReadOnlyVariable,
                InvalidOperation, InvalidExpression.
        """
        handler = _HANDLERS.get(action.kind)
        if handler is None:
            raise ActionError(f"Unsupported action {action.kind}", ErrorKind.INVALID_OPERATION)
        try:
            handler(self, action, scope or self.scope())
        except EvalError as e:
            raise ActionError(f"{action}: {e.message}", e.kind) from e

    def run(
        self, steps: Iterable[ActionStep], scope: EvalScope | None = None
    ) -> ActionError | None:
        """Run an event body; returns the first failure instead of raising."""
        scope = scope or self.scope()
        try:
            with self.store.batch():
                self.run_steps(steps, scope)
        except ActionError as e:
            logger.warning("Action aborted: %s", e)
            return e
        return None

    def run_steps(self, steps: Iterable[ActionStep], scope: EvalScope) -> None:
        for step in steps:
            self.run_step(step, scope)

    def run_step(self, step: ActionStep, scope: EvalScope) -> None:
        if isinstance(step, ActionInvocation):
            self.execute(step, scope)
        elif isinstance(step, ConditionalActions):
            for branch in step.branches:
                if branch.condition is None or evaluate_condition(branch.condition, scope):
                    self.run_steps(branch.actions, scope)
                    break
        elif isinstance(step, SwitchActions):
            self._run_switch(step, scope)
        elif isinstance(step, SequenceActions):
            if self.schedule_sequence is None:
                logger.warning("Sequence ignored: no scheduler attached to this executor")
                return
            self.schedule_sequence(step, scope)

    def _run_switch(self, step: SwitchActions, scope: EvalScope) -> None:
        try:
            value = evaluate(step.value, scope)
        except EvalError as e:
            raise ActionError(f"Switch: {e.message}", e.kind) from e
        text = stringify(value)
        matched = next((c for c in step.cases if c.value == text), None)
        if matched is None:
            matched = next((c for c in step.cases if c.value is None), None)
        if matched is not None:
            self.run_steps(matched.actions, scope)

    # -- Helpers --

    def _target(self, action: ActionInvocation) -> str:
        if not action.target_var:
            raise ActionError(f"{action.kind} needs a target variable", ErrorKind.INVALID_OPERATION)
        self.store.spec(action.target_var)
        return action.target_var

    def _source_name(self, action: ActionInvocation, param: str = "var") -> str:
        name = action.params.get(param)
        if not name:
            raise ActionError(f"{action.kind} needs '{param}'", ErrorKind.INVALID_OPERATION)
        self.store.spec(name)
        return name

    def _require_type(self, action: ActionInvocation, name: str, *types: VariableType) -> None:
        spec = self.store.spec(name)
        if spec.type not in types:
            raise ActionError(
                f"{action.kind} cannot operate on {spec.type} variable '{name}'",
                ErrorKind.TYPE_MISMATCH,
            )

    def _array(self, action: ActionInvocation, name: str) -> list[Any]:
        value = self.store.get(name)
        if value is None:
            return []
        if not isinstance(value, list):
            raise ActionError(
                f"{action.kind} needs an array in '{name}', got {type(value).__name__}",
                ErrorKind.TYPE_MISMATCH,
            )
        return value

    def _value(self, action: ActionInvocation, scope: EvalScope) -> Any:
        """``expression`` is evaluated; ``value`` is literal text with placeholders."""
        if "expression" in action.params:
            return evaluate(self._expr(action.params["expression"]), scope)
        if "value" in action.params:
            return interpolate_value(action.params["value"], scope)
        raise ActionError(
            f"{action.kind} needs 'value' or 'expression'", ErrorKind.INVALID_OPERATION
        )

    def _number_param(self, action: ActionInvocation, key: str, scope: EvalScope) -> Any:
        raw = action.params.get(key)
        if raw is None:
            return None
        number = to_number(interpolate_value(raw, scope))
        if number is None:
            raise ActionError(
                f"{action.kind} {key}={raw!r} is not a number", ErrorKind.TYPE_MISMATCH
            )
        return number

    def _index_param(self, action: ActionInvocation, key: str, scope: EvalScope) -> int:
        number = self._number_param(action, key, scope)
        if number is None or not float(number).is_integer():
            raise ActionError(
                f"{action.kind} needs an integer '{key}'", ErrorKind.TYPE_MISMATCH
            )
        return int(number)

    def _read_path(self, action: ActionInvocation, path: str) -> Any:
        """Read ``name.rest`` or ``$vars.name.rest`` where ``name`` is declared."""
        path = path.strip().removeprefix("$vars.")
        segments = coll.split_path(path)
        if not segments:
            raise ActionError(f"{action.kind} needs a source path", ErrorKind.INVALID_OPERATION)
        self.store.spec(segments[0])
        return coll.get_path(self.store.get(segments[0]), ".".join(segments[1:]))

    @staticmethod
    def _expr(source: str) -> Expr:
        return compile_expression(source)

    def _optional_expr(self, action: ActionInvocation, key: str) -> Expr | None:
        source = action.params.get(key)
        return self._expr(source) if source else None

    # -- Scalar actions --

    def _do_set(self, action: ActionInvocation, scope: EvalScope) -> None:
        self.store.set(self._target(action), self._value(action, scope))

    def _do_step(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.NUMBER)
        by = self._number_param(action, "by", scope)
        by = 1 if by is None else by
        current = self.store.get(name) or 0
        updated = current + by if action.kind == ActionKind.INCREMENT else current - by

        minimum = self._number_param(action, "min", scope)
        maximum = self._number_param(action, "max", scope)
        if minimum is not None:
            updated = max(updated, minimum)
        if maximum is not None:
            updated = min(updated, maximum)
        self.store.set(name, updated)

    def _do_toggle(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.BOOLEAN)
        self.store.set(name, not self.store.get(name))

    def _do_reset(self, action: ActionInvocation, scope: EvalScope) -> None:
        if action.target_var:
            self.store.reset(self._target(action))
        else:
            self.store.reset_all()

    def _do_cycle(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        values = [v.strip() for v in action.params.get("values", "").split(",") if v.strip()]
        if not values:
            raise ActionError("Cycle needs a non-empty 'values' list", ErrorKind.INVALID_OPERATION)
        current = stringify(self.store.get(name))
        position = values.index(current) + 1 if current in values else 0
        self.store.set(name, values[position % len(values)])

    def _do_text(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.STRING)
        addition = stringify(self._value(action, scope))
        current = self.store.get(name) or ""
        if action.kind == ActionKind.APPEND:
            self.store.set(name, current + addition)
        else:
            self.store.set(name, addition + current)

    # -- Array actions --

    def _do_push(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.ARRAY)
        item = copy.deepcopy(self._value(action, scope))
        self.store.set(name, [*self._array(action, name), item])

    def _do_pop(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.ARRAY)
        items = self._array(action, name)
        if items:
            self.store.set(name, items[:-1])

    def _do_remove_at(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        self._require_type(action, name, VariableType.ARRAY)
        items = self._array(action, name)
        index = self._index_param(action, "index", scope)
        if 0 <= index < len(items):
            self.store.set(name, items[:index] + items[index + 1 :])

    def _do_array_at(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action, "array"))
        index = self._index_param(action, "index", scope)
        value = items[index] if 0 <= index < len(items) else None
        self.store.set(self._target(action), copy.deepcopy(value))

    # -- Object actions --

    def _do_object_set(self, action: ActionInvocation, scope: EvalScope) -> None:
        name = self._target(action)
        current = self.store.get(name)
        if current is not None and not isinstance(current, (dict, list)):
            raise ActionError(
                f"ObjectSet needs an object in '{name}', got {type(current).__name__}",
                ErrorKind.TYPE_MISMATCH,
            )
        path = interpolate(action.params.get("path", ""), scope)
        if not path:
            raise ActionError("ObjectSet needs a 'path'", ErrorKind.INVALID_OPERATION)
        self.store.set(name, coll.set_path(current, path, self._value(action, scope)))

    def _do_merge(self, action: ActionInvocation, scope: EvalScope) -> None:
        merged: dict[str, Any] = {}
        for source in (s.strip() for s in action.params.get("sources", "").split(",")):
            if not source:
                continue
            self.store.spec(source)
            value = self.store.get(source)
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ActionError(
                    f"Merge source '{source}' is not an object", ErrorKind.TYPE_MISMATCH
                )
            merged.update(copy.deepcopy(value))
        self.store.set(self._target(action), merged)

    def _do_clone(self, action: ActionInvocation, scope: EvalScope) -> None:
        value = self.store.get(self._source_name(action))
        self.store.set(self._target(action), copy.deepcopy(value))

    def _do_extract(self, action: ActionInvocation, scope: EvalScope) -> None:
        source = self._read_path(action, action.params.get("from", ""))
        pairs = [(entry.get("path", ""), entry.get("as", "")) for entry in action.entries]
        if action.params.get("path") and action.target_var:
            pairs.append((action.params["path"], action.target_var))
        for path, name in pairs:
            if not name:
                continue
            self.store.spec(name)
            self.store.set(name, copy.deepcopy(coll.get_path(source, path)))

    # -- Collection actions --

    def _do_filter(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        where = self._optional_expr(action, "where")
        if where is None:
            raise ActionError("Filter needs 'where'", ErrorKind.INVALID_OPERATION)
        self.store.set(self._target(action), coll.filter_items(items, where, scope))

    def _do_find(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        where = self._optional_expr(action, "where")
        if where is None:
            raise ActionError("Find needs 'where'", ErrorKind.INVALID_OPERATION)
        self.store.set(self._target(action), coll.find_item(items, where, scope))

    def _do_transform(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        expression = self._optional_expr(action, "expression")
        if expression is None:
            raise ActionError("Transform needs 'expression'", ErrorKind.INVALID_OPERATION)
        self.store.set(self._target(action), coll.transform_items(items, expression, scope))

    def _do_sort(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        order = action.params.get("order", "asc")
        if action.params.get("order-var"):
            order = stringify(self.store.get(self._source_name(action, "order-var")))
        order = "desc" if order.strip().lower() == "desc" else "asc"
        by = self._optional_expr(action, "by")
        self.store.set(self._target(action), coll.sort_items(items, by, scope, order))

    def _do_sum(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        self.store.set(self._target(action), coll.sum_items(items, action.params.get("property")))

    def _do_count(self, action: ActionInvocation, scope: EvalScope) -> None:
        items = self._array(action, self._source_name(action))
        where = self._optional_expr(action, "where")
        self.store.set(self._target(action), coll.count_items(items, where, scope))

    def _do_get(self, action: ActionInvocation, scope: EvalScope) -> None:
        source = self._read_path(action, action.params.get("from") or action.params.get("var", ""))
        index_key = "at" if "at" in action.params else "index"
        if index_key in action.params:
            index = self._index_param(action, index_key, scope)
            value = source[index] if isinstance(source, list) and 0 <= index < len(source) else None
        else:
            raw_path = action.params.get("property") or action.params.get("path", "")
            value = coll.get_path(source, interpolate(raw_path, scope))
        self.store.set(self._target(action), copy.deepcopy(value))

    # -- Effects --

    def _do_toast(self, action: ActionInvocation, scope: EvalScope) -> None:
        duration = self._number_param(action, "duration", scope)
        toast = Toast(
            message=interpolate(action.params.get("message", ""), scope),
            type=action.params.get("type", "info"),
            duration_ms=int(duration) if duration is not None else 3000,
        )
        if self.on_toast is None:
            logger.info("Toast (%s): %s", toast.type, toast.message)
            return
        self.on_toast(toast)


_HANDLERS: dict[ActionKind, Handler] = {
    ActionKind.SET: ActionExecutor._do_set,
    ActionKind.INCREMENT: ActionExecutor._do_step,
    ActionKind.DECREMENT: ActionExecutor._do_step,
    ActionKind.TOGGLE: ActionExecutor._do_toggle,
    ActionKind.RESET: ActionExecutor._do_reset,
    ActionKind.CYCLE: ActionExecutor._do_cycle,
    ActionKind.APPEND: ActionExecutor._do_text,
    ActionKind.PREPEND: ActionExecutor._do_text,
    ActionKind.PUSH: ActionExecutor._do_push,
    ActionKind.POP: ActionExecutor._do_pop,
    ActionKind.REMOVE_AT: ActionExecutor._do_remove_at,
    ActionKind.ARRAY_AT: ActionExecutor._do_array_at,
    ActionKind.OBJECT_SET: ActionExecutor._do_object_set,
    ActionKind.MERGE: ActionExecutor._do_merge,
    ActionKind.CLONE: ActionExecutor._do_clone,
    ActionKind.EXTRACT: ActionExecutor._do_extract,
    ActionKind.FILTER: ActionExecutor._do_filter,
    ActionKind.SORT: ActionExecutor._do_sort,
    ActionKind.TRANSFORM: ActionExecutor._do_transform,
    ActionKind.FIND: ActionExecutor._do_find,
    ActionKind.SUM: ActionExecutor._do_sum,
    ActionKind.COUNT: ActionExecutor._do_count,
    ActionKind.GET: ActionExecutor._do_get,
    ActionKind.SHOW_TOAST: ActionExecutor._do_toast,
}
