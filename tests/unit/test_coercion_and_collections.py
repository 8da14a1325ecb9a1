"""Tests for value coercion and the pure collection helpers."""

from __future__ import annotations

import copy

import pytest

from residentml.core.errors import ActionError, ErrorKind
from residentml.core.expression_lang import EvalScope, parse_expr
from residentml.core.ir.variables import VariableType
from residentml.core.state import collections as coll
from residentml.core.state.coercion import (
    coerce_url_param,
    coerce_value,
    matches_type,
    parse_initial,
)


class TestCoerceValue:
    @pytest.mark.parametrize(
        ("var_type", "value", "expected"),
        [
            (VariableType.NUMBER, "2.50", 2.5),
            (VariableType.NUMBER, "", 0),
            (VariableType.NUMBER, 3.0, 3),
            (VariableType.STRING, 12, "12"),
            (VariableType.STRING, None, ""),
            (VariableType.BOOLEAN, "TRUE", True),
            (VariableType.BOOLEAN, "0", False),
            (VariableType.BOOLEAN, 1, True),
            (VariableType.ARRAY, ("a", "b"), ["a", "b"]),
            (VariableType.OBJECT, {"k": 1}, {"k": 1}),
            (VariableType.OBJECT, None, None),
        ],
    )
    def test_conversions(self, var_type: VariableType, value: object, expected: object) -> None:
        assert coerce_value(var_type, value) == expected

    @pytest.mark.parametrize(
        ("var_type", "value"),
        [
            (VariableType.NUMBER, "abc"),
            (VariableType.NUMBER, float("inf")),
            (VariableType.NUMBER, [1]),
            (VariableType.STRING, ["a"]),
            (VariableType.BOOLEAN, "yes"),
            (VariableType.ARRAY, "a,b"),
            (VariableType.OBJECT, "not an object"),
            (VariableType.OBJECT, 3),
            (VariableType.OBJECT, ["a"]),
        ],
    )
    def test_mismatches(self, var_type: VariableType, value: object) -> None:
        with pytest.raises(ActionError) as exc_info:
            coerce_value(var_type, value, "v")
        assert exc_info.value.kind == ErrorKind.TYPE_MISMATCH

    def test_matches_type(self) -> None:
        assert matches_type(VariableType.NUMBER, 1)
        assert not matches_type(VariableType.NUMBER, True)
        assert matches_type(VariableType.OBJECT, {"a": 1})
        assert not matches_type(VariableType.OBJECT, "anything")
        assert not matches_type(VariableType.OBJECT, [1])
        assert matches_type(VariableType.COMPUTED, "anything")


class TestParseInitial:
    def test_defaults(self) -> None:
        assert parse_initial(VariableType.NUMBER, None) == 0
        assert parse_initial(VariableType.STRING, None) == ""
        assert parse_initial(VariableType.BOOLEAN, "true") is True
        assert parse_initial(VariableType.ARRAY, "") == []
        assert parse_initial(VariableType.OBJECT, None) == {}

    def test_json_values(self) -> None:
        assert parse_initial(VariableType.ARRAY, '["red","blue"]') == ["red", "blue"]
        assert parse_initial(VariableType.OBJECT, '{"a": {"b": 1}}') == {"a": {"b": 1}}

    def test_rejects_bad_values(self) -> None:
        with pytest.raises(ValueError):
            parse_initial(VariableType.NUMBER, "ten")
        with pytest.raises(ValueError):
            parse_initial(VariableType.ARRAY, '{"not": "array"}')
        with pytest.raises(ValueError):
            parse_initial(VariableType.OBJECT, "[1, 2]")

    def test_url_params(self) -> None:
        assert coerce_url_param("7", "number") == 7
        assert coerce_url_param("x", "number") is None
        assert coerce_url_param("True", "boolean") is True
        assert coerce_url_param("a|b", "array", "|") == ["a", "b"]
        assert coerce_url_param("raw", None) == "raw"


@pytest.fixture
def people() -> list[dict[str, object]]:
    return [
        {"name": "Cy", "age": 40},
        {"name": "Ada", "age": 36},
        {"name": "Bo", "age": None},
        {"name": "Di", "age": 25},
    ]


class TestCollections:
    def test_filter_does_not_mutate(self, people: list[dict[str, object]]) -> None:
        before = copy.deepcopy(people)
        result = coll.filter_items(people, parse_expr("item.age > 30"), EvalScope())
        assert [p["name"] for p in result] == ["Cy", "Ada"]
        result[0]["name"] = "changed"
        assert people == before

    def test_find(self, people: list[dict[str, object]]) -> None:
        found = coll.find_item(people, parse_expr("item.name == 'Di'"), EvalScope())
        assert found == {"name": "Di", "age": 25}
        assert coll.find_item(people, parse_expr("item.age > 100"), EvalScope()) is None

    def test_transform_binds_index(self, people: list[dict[str, object]]) -> None:
        result = coll.transform_items(people, parse_expr("index + ':' + item.name"), EvalScope())
        assert result == ["0:Cy", "1:Ada", "2:Bo", "3:Di"]

    def test_count(self, people: list[dict[str, object]]) -> None:
        assert coll.count_items(people, None, EvalScope()) == 4
        assert coll.count_items(people, parse_expr("item.age"), EvalScope()) == 3

    def test_sum_skips_non_numbers(self, people: list[dict[str, object]]) -> None:
        assert coll.sum_items(people, "age") == 101
        assert coll.sum_items([1, "2", "x", True, 2.5]) == 5.5

    def test_sort_nulls_last(self, people: list[dict[str, object]]) -> None:
        ascending = coll.sort_items(people, parse_expr("item.age"), EvalScope())
        assert [p["name"] for p in ascending] == ["Di", "Ada", "Cy", "Bo"]
        descending = coll.sort_items(people, parse_expr("item.age"), EvalScope(), "desc")
        assert [p["name"] for p in descending] == ["Cy", "Ada", "Di", "Bo"]

    def test_sort_is_stable(self) -> None:
        items = [{"k": 1, "id": "a"}, {"k": 0, "id": "b"}, {"k": 1, "id": "c"}]
        result = coll.sort_items(items, parse_expr("item.k"), EvalScope())
        assert [i["id"] for i in result] == ["b", "a", "c"]

    def test_get_path(self) -> None:
        value = {"a": {"b": [{"c": 1}]}}
        assert coll.get_path(value, "a.b[0].c") == 1
        assert coll.get_path(value, "a.b.length") == 1
        assert coll.get_path(value, "a.x.y") is None

    def test_set_path_copies(self) -> None:
        original = {"profile": {"name": "Ada", "tags": ["x"]}, "other": {"keep": True}}
        updated = coll.set_path(original, "profile.name", "Bo")
        assert updated["profile"]["name"] == "Bo"
        assert original["profile"]["name"] == "Ada"
        assert updated["other"] is original["other"]

    def test_set_path_creates_intermediates(self) -> None:
        assert coll.set_path(None, "a.b", 1) == {"a": {"b": 1}}
        assert coll.set_path([], "2", "z") == [None, None, "z"]
