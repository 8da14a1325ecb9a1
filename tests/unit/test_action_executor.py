"""Tests for the action executor."""

from __future__ import annotations

import logging

import pytest

from residentml.core.errors import ActionError, ErrorKind
from residentml.core.ir.actions import (
    ActionInvocation,
    ActionKind,
    ConditionalActions,
    ConditionalBranch,
    SequenceActions,
    SequenceStep,
    SwitchActions,
    SwitchCase,
)
from residentml.core.ir.variables import VariableSpec, VariableType
from residentml.core.state import ActionExecutor, Toast, VariableStore


def act(
    kind: ActionKind,
    target: str | None = None,
    entries: list[dict[str, str]] | None = None,
    **params: str,
) -> ActionInvocation:
    return ActionInvocation(
        kind=kind,
        target_var=target,
        params={key.replace("_", "-"): value for key, value in params.items()},
        entries=entries or [],
    )


def var(name: str, var_type: VariableType, initial: object = None) -> VariableSpec:
    return VariableSpec(name=name, type=var_type, initial=initial)


@pytest.fixture
def store() -> VariableStore:
    return VariableStore(
        [
            var("count", VariableType.NUMBER, 0),
            var("price", VariableType.NUMBER, 100),
            var("open", VariableType.BOOLEAN, False),
            var("label", VariableType.STRING, "mid"),
            var("theme", VariableType.STRING, "light"),
            var("tags", VariableType.ARRAY, ["red", "blue", "green"]),
            var("people", VariableType.ARRAY, [
                {"name": "Cy", "age": 40},
                {"name": "Ada", "age": 36},
                {"name": "Di", "age": 25},
            ]),
            var("result", VariableType.OBJECT, None),
            var("matches", VariableType.ARRAY, []),
            var("profile", VariableType.OBJECT, {"name": "Ada", "links": {"site": "a.example"}}),
            var("extra", VariableType.OBJECT, {"mood": "happy"}),
            var("order", VariableType.STRING, "desc"),
            VariableSpec(
                name="double", type=VariableType.COMPUTED, expression="$vars.count * 2"
            ),
        ]
    )


@pytest.fixture
def toasts() -> list[Toast]:
    return []


@pytest.fixture
def executor(store: VariableStore, toasts: list[Toast]) -> ActionExecutor:
    return ActionExecutor(store, {"owner": {"id": "u1"}}, on_toast=toasts.append)


class TestScalarActions:
    def test_set_literal_and_expression(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(act(ActionKind.SET, "label", value="hello"))
        assert store.get("label") == "hello"
        executor.execute(act(ActionKind.SET, "count", expression="$vars.price / 4"))
        assert store.get("count") == 25

    def test_set_value_placeholder_keeps_type(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        set_value = act(ActionKind.SET, "count", value="{value}")
        executor.execute(set_value, executor.scope({"value": 7}))
        assert store.get("count") == 7

    def test_increment_decrement_with_bounds(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(act(ActionKind.INCREMENT, "count", by="5", max="8"))
        executor.execute(act(ActionKind.INCREMENT, "count", by="5", max="8"))
        assert store.get("count") == 8
        executor.execute(act(ActionKind.DECREMENT, "count", by="20", min="0"))
        assert store.get("count") == 0

    def test_increment_updates_computed(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(act(ActionKind.INCREMENT, "count"))
        assert store.get("double") == 2

    def test_increment_requires_number(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.INCREMENT, "label"))
        assert exc_info.value.kind == ErrorKind.TYPE_MISMATCH

    def test_toggle(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.TOGGLE, "open"))
        assert store.get("open") is True

    def test_cycle_wraps(self, executor: ActionExecutor, store: VariableStore) -> None:
        cycle = act(ActionKind.CYCLE, "label", values="low, mid, high")
        executor.execute(cycle)
        assert store.get("label") == "high"
        executor.execute(cycle)
        assert store.get("label") == "low"

    def test_append_prepend(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.APPEND, "label", value="!"))
        executor.execute(act(ActionKind.PREPEND, "label", value="["))
        assert store.get("label") == "[mid!"

    def test_reset_one_and_all(self, executor: ActionExecutor, store: VariableStore) -> None:
        store.set("count", 9)
        store.set("label", "x")
        executor.execute(act(ActionKind.RESET, "count"))
        assert store.get("count") == 0
        assert store.get("label") == "x"
        executor.execute(act(ActionKind.RESET))
        assert store.get("label") == "mid"

    def test_unknown_target(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.SET, "ghost", value="1"))
        assert exc_info.value.kind == ErrorKind.UNKNOWN_VARIABLE

    def test_readonly_target(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.SET, "double", value="1"))
        assert exc_info.value.kind == ErrorKind.READONLY_VARIABLE

    def test_invalid_expression_is_reported(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.SET, "count", expression="1 +"))
        assert exc_info.value.kind == ErrorKind.INVALID_EXPRESSION


class TestArrayActions:
    def test_push_pop(self, executor: ActionExecutor, store: VariableStore) -> None:
        before = store.get("tags")
        executor.execute(act(ActionKind.PUSH, "tags", value="gold"))
        assert store.get("tags") == ["red", "blue", "green", "gold"]
        assert before == ["red", "blue", "green"]
        executor.execute(act(ActionKind.POP, "tags"))
        executor.execute(act(ActionKind.POP, "tags"))
        assert store.get("tags") == ["red", "blue"]

    def test_remove_at(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.REMOVE_AT, "tags", index="{i}"), executor.scope({"i": 1}))
        assert store.get("tags") == ["red", "green"]

    def test_remove_at_out_of_range_is_noop(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(act(ActionKind.REMOVE_AT, "tags", index="10"))
        assert store.get("tags") == ["red", "blue", "green"]

    def test_array_at(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.ARRAY_AT, "label", array="tags", index="2"))
        assert store.get("label") == "green"

    def test_push_on_non_array(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.PUSH, "label", value="x"))
        assert exc_info.value.kind == ErrorKind.TYPE_MISMATCH


class TestObjectActions:
    def test_object_set_does_not_alias(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        before = store.get("profile")
        set_site = act(ActionKind.OBJECT_SET, "profile", path="links.site", value="b.example")
        executor.execute(set_site)
        assert store.get("profile")["links"]["site"] == "b.example"
        assert before["links"]["site"] == "a.example"

    def test_object_set_on_string_is_mismatch(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.OBJECT_SET, "label", path="a", value="1"))
        assert exc_info.value.kind == ErrorKind.TYPE_MISMATCH

    def test_set_non_object_is_mismatch(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.SET, "profile", value="not an object"))
        assert exc_info.value.kind == ErrorKind.TYPE_MISMATCH
        assert store.get("profile")["name"] == "Ada"

    def test_merge(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.MERGE, "result", sources="profile, extra, result"))
        merged = store.get("result")
        assert merged["mood"] == "happy"
        assert merged["name"] == "Ada"

    def test_clone_is_deep(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.CLONE, "result", var="profile"))
        assert store.get("result") == store.get("profile")
        assert store.get("result")["links"] is not store.get("profile")["links"]

    def test_extract_entries(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(
            act(
                ActionKind.EXTRACT,
                entries=[{"path": "links.site", "as": "label"}, {"path": "name", "as": "theme"}],
                **{"from": "$vars.profile"},
            )
        )
        assert store.get("label") == "a.example"
        assert store.get("theme") == "Ada"


class TestCollectionActions:
    def test_filter_leaves_source_untouched(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(act(ActionKind.FILTER, "matches", var="people", where="item.age > 30"))
        assert [p["name"] for p in store.get("matches")] == ["Cy", "Ada"]
        assert len(store.get("people")) == 3

    def test_sort_with_order_var(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(
            act(ActionKind.SORT, "matches", var="people", by="item.age", order_var="order")
        )
        assert [p["age"] for p in store.get("matches")] == [40, 36, 25]
        assert [p["age"] for p in store.get("people")] == [40, 36, 25]
        store.set("order", "asc")
        executor.execute(
            act(ActionKind.SORT, "matches", var="people", by="item.age", order_var="order")
        )
        assert [p["age"] for p in store.get("matches")] == [25, 36, 40]

    def test_transform_find_count_sum(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        executor.execute(
            act(ActionKind.TRANSFORM, "matches", var="people", expression="item.name")
        )
        assert store.get("matches") == ["Cy", "Ada", "Di"]
        executor.execute(act(ActionKind.FIND, "result", var="people", where="item.age < 30"))
        assert store.get("result") == {"name": "Di", "age": 25}
        executor.execute(act(ActionKind.COUNT, "count", var="people", where="item.age > 30"))
        assert store.get("count") == 2
        executor.execute(act(ActionKind.SUM, "count", var="people", property="age"))
        assert store.get("count") == 101

    def test_get(self, executor: ActionExecutor, store: VariableStore) -> None:
        executor.execute(act(ActionKind.GET, "label", var="tags", at="1"))
        assert store.get("label") == "blue"
        executor.execute(act(ActionKind.GET, "theme", var="profile", property="links.site"))
        assert store.get("theme") == "a.example"

    def test_filter_requires_where(self, executor: ActionExecutor) -> None:
        with pytest.raises(ActionError) as exc_info:
            executor.execute(act(ActionKind.FILTER, "matches", var="people"))
        assert exc_info.value.kind == ErrorKind.INVALID_OPERATION


class TestControlSteps:
    def test_run_aborts_on_first_error(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        error = executor.run(
            [
                act(ActionKind.INCREMENT, "count"),
                act(ActionKind.INCREMENT, "label"),
                act(ActionKind.INCREMENT, "count"),
            ]
        )
        assert error is not None
        assert error.kind == ErrorKind.TYPE_MISMATCH
        assert store.get("count") == 1

    def test_run_notifies_once(self, executor: ActionExecutor, store: VariableStore) -> None:
        changes: list[frozenset[str]] = []
        store.subscribe_all(changes.append)
        executor.run([act(ActionKind.INCREMENT, "count"), act(ActionKind.TOGGLE, "open")])
        assert changes == [frozenset({"count", "double", "open"})]

    def test_conditional_first_true_branch(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        step = ConditionalActions(
            branches=[
                ConditionalBranch(
                    condition={"data": "$vars.count", "greaterThan": "5"},
                    actions=[act(ActionKind.SET, "label", value="big")],
                ),
                ConditionalBranch(
                    condition={"data": "$vars.count", "equals": "0"},
                    actions=[act(ActionKind.SET, "label", value="zero")],
                ),
                ConditionalBranch(actions=[act(ActionKind.SET, "label", value="other")]),
            ]
        )
        executor.run([step])
        assert store.get("label") == "zero"

    def test_switch(self, executor: ActionExecutor, store: VariableStore) -> None:
        step = SwitchActions(
            value="$vars.theme",
            cases=[
                SwitchCase(value="dark", actions=[act(ActionKind.SET, "count", value="1")]),
                SwitchCase(value="light", actions=[act(ActionKind.SET, "count", value="2")]),
                SwitchCase(actions=[act(ActionKind.SET, "count", value="3")]),
            ],
        )
        executor.run([step])
        assert store.get("count") == 2

    def test_switch_default_first_still_matches_case(
        self, executor: ActionExecutor, store: VariableStore
    ) -> None:
        step = SwitchActions(
            value="$vars.theme",
            cases=[
                SwitchCase(actions=[act(ActionKind.SET, "count", value="3")]),
                SwitchCase(value="light", actions=[act(ActionKind.SET, "count", value="2")]),
            ],
        )
        executor.run([step])
        assert store.get("count") == 2
        store.set("theme", "neon")
        executor.run([step])
        assert store.get("count") == 3

    def test_sequence_handed_to_scheduler(self, store: VariableStore) -> None:
        scheduled = []
        executor = ActionExecutor(store, schedule_sequence=lambda seq, scope: scheduled.append(seq))
        sequence = SequenceActions(
            steps=[SequenceStep(delay_ms=100, actions=[act(ActionKind.INCREMENT, "count")])]
        )
        assert executor.run([sequence]) is None
        assert scheduled == [sequence]
        assert store.get("count") == 0

    def test_sequence_without_scheduler_warns(
        self, store: VariableStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        executor = ActionExecutor(store)
        with caplog.at_level(logging.WARNING):
            executor.run([SequenceActions(steps=[SequenceStep()])])
        assert "no scheduler" in caplog.text


class TestToast:
    def test_toast_sink(self, executor: ActionExecutor, toasts: list[Toast]) -> None:
        executor.execute(
            act(ActionKind.SHOW_TOAST, message="Saved {name}", type="success", duration="500"),
            executor.scope({"name": "Ada"}),
        )
        assert toasts == [Toast(message="Saved Ada", type="success", duration_ms=500)]
