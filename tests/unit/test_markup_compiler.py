"""Tests for markup parsing and template compilation."""

from __future__ import annotations

import pytest

from residentml.core.errors import ErrorKind
from residentml.core.ir.actions import (
    ActionInvocation,
    ActionKind,
    EventKind,
    SequenceActions,
    SwitchActions,
)
from residentml.core.ir.template import FRAGMENT_TAG, ISLAND_TAG, CompiledTemplate, IslandKind
from residentml.core.ir.variables import VariableType
from residentml.core.manifest import CompilerLimits
from residentml.core.markup import (
    MarkupLimitError,
    TagKind,
    compile_template,
    default_registry,
    parse_markup,
)

COUNTER = """
<Var name="count" type="number" initial="0" />
<button class="inc">
  <OnClick><Increment var="count" /></OnClick>
  Add
</button>
<ShowVar name="count" />
"""


def compile_ok(markup: str, **kwargs: object) -> CompiledTemplate:
    result = compile_template(markup, **kwargs)
    assert result.success, [str(e) for e in result.errors]
    return result.unwrap()


def error_kinds(markup: str, **kwargs: object) -> list[ErrorKind]:
    result = compile_template(markup, **kwargs)
    assert not result.success
    assert result.template is None
    return [e.kind for e in result.errors]


class TestParseMarkup:
    def test_document_body_only(self) -> None:
        parsed = parse_markup(
            "<html><head><title>x</title></head><body><p>hi</p></body></html>"
        )
        assert [child.tag for child in parsed.root.children] == ["p"]

    def test_inline_handlers_removed(self) -> None:
        parsed = parse_markup('<div onclick="steal()" class="box">x</div>')
        div = parsed.root.children[0]
        assert div.attributes == {"class": "box"}
        assert any("onclick" in w for w in parsed.warnings)

    def test_script_urls_removed(self) -> None:
        parsed = parse_markup('<a href=" java\tscript:alert(1)">x</a><a href="/ok">y</a>')
        assert "href" not in parsed.root.children[0].attributes
        assert parsed.root.children[1].attributes["href"] == "/ok"

    def test_spans_are_one_indexed(self) -> None:
        parsed = parse_markup("\n  <p>x</p>")
        span = parsed.root.children[0].span
        assert span is not None
        assert (span.line, span.column) == (2, 3)

    def test_stray_closing_tag_warns(self) -> None:
        parsed = parse_markup("<p>x</p></div>")
        assert any("stray closing tag" in w for w in parsed.warnings)

    def test_depth_limit(self) -> None:
        with pytest.raises(MarkupLimitError):
            parse_markup("<div><div><div><div>x</div></div></div></div>", max_depth=3)

    def test_node_limit(self) -> None:
        with pytest.raises(MarkupLimitError):
            parse_markup("<p>a</p>" * 5, max_nodes=4)


class TestTagRegistry:
    def test_case_insensitive_resolution(self) -> None:
        registry = default_registry()
        spec = registry.resolve("showvar")
        assert spec is not None
        assert spec.name == "ShowVar"
        assert spec.is_dsl

    def test_kinds(self) -> None:
        registry = default_registry(["Guestbook2"])
        assert registry.kind_of("div") == TagKind.STRUCTURAL
        assert registry.kind_of("ProfilePhoto") == TagKind.COMPONENT
        assert registry.kind_of("guestbook2") == TagKind.COMPONENT
        assert registry.kind_of("Increment") == TagKind.ACTION
        assert registry.kind_of("script") is None


class TestCompileCounter:
    def test_islands_and_variables(self) -> None:
        template = compile_ok(COUNTER)
        assert [v.name for v in template.variables] == ["count"]
        assert [island.component for island in template.islands] == ["button", "ShowVar"]
        assert all(island.kind == IslandKind.TEMPLATE for island in template.islands)
        islands_in_ast = [n for n in template.ast.walk() if n.tag == ISLAND_TAG]
        assert len(islands_in_ast) == 2

    def test_click_binding(self) -> None:
        button = compile_ok(COUNTER).islands[0]
        assert len(button.bindings) == 1
        binding = button.bindings[0]
        assert binding.id == f"{button.id}/b1"
        assert binding.event_kind == EventKind.CLICK
        assert binding.actions == [
            ActionInvocation(
                kind=ActionKind.INCREMENT, target_var="count", params={"var": "count"}
            )
        ]
        assert button.binding(binding.id) is binding

    def test_ids_are_deterministic(self) -> None:
        first = [island.id for island in compile_ok(COUNTER).islands]
        second = [island.id for island in compile_ok(COUNTER).islands]
        assert first == second
        assert all(island_id.startswith("island-") for island_id in first)

    def test_identical_subtrees_get_distinct_ids(self) -> None:
        template = compile_ok(
            '<Var name="n" type="number" /><ShowVar name="n" /><ShowVar name="n" />'
        )
        first, second = (island.id for island in template.islands)
        assert second == f"{first}-2"

    def test_placeholder_markup(self) -> None:
        island = compile_ok(COUNTER).islands[1]
        assert island.placeholder == (
            f'<div data-island="{island.id}" data-component="ShowVar"></div>'
        )

    def test_serialises(self) -> None:
        template = compile_ok(COUNTER)
        restored = CompiledTemplate.model_validate_json(template.model_dump_json())
        assert restored == template

    def test_stats(self) -> None:
        stats = compile_ok(COUNTER).stats
        assert stats.node_count == 5
        assert stats.markup_bytes == len(COUNTER.encode())


class TestCompileErrors:
    def test_use_before_declaration(self) -> None:
        kinds = error_kinds('<ShowVar name="n" /><Var name="n" type="number" />')
        assert kinds == [ErrorKind.UNDECLARED_VARIABLE]

    def test_unknown_tag(self) -> None:
        assert error_kinds("<script>alert(1)</script>") == [ErrorKind.UNKNOWN_TAG]

    def test_error_location(self) -> None:
        result = compile_template("<p>ok</p>\n\n  <Bogus />")
        context = result.errors[0].context
        assert context is not None
        assert (context.line, context.column) == (3, 3)

    def test_duplicate_variable(self) -> None:
        kinds = error_kinds('<Var name="a" type="number" /><Var name="a" type="string" />')
        assert kinds == [ErrorKind.DUPLICATE_VARIABLE]

    def test_unknown_variable_type(self) -> None:
        assert error_kinds('<Var name="a" type="date" />') == [ErrorKind.INVALID_ATTRIBUTE]

    def test_bad_initial_value(self) -> None:
        assert error_kinds('<Var name="a" type="number" initial="ten" />') == [
            ErrorKind.INVALID_ATTRIBUTE
        ]

    def test_computed_self_reference(self) -> None:
        kinds = error_kinds('<Var name="a" type="computed" expression="$vars.a + 1" />')
        assert kinds == [ErrorKind.CYCLIC_COMPUTED]

    def test_invalid_expression(self) -> None:
        kinds = error_kinds('<Var name="a" type="computed" expression="1 +" />')
        assert kinds == [ErrorKind.INVALID_EXPRESSION]

    def test_forbidden_call_in_expression(self) -> None:
        markup = '<Var name="a" type="computed" expression="alert(1)" />'
        assert error_kinds(markup) == [ErrorKind.INVALID_EXPRESSION]

    def test_else_without_if(self) -> None:
        assert error_kinds("<Else>x</Else>") == [ErrorKind.INVALID_ATTRIBUTE]

    def test_missing_action_attribute(self) -> None:
        markup = (
            '<Var name="n" type="number" />'
            '<button><OnClick><Cycle var="n" /></OnClick></button>'
        )
        assert ErrorKind.INVALID_ATTRIBUTE in error_kinds(markup)

    def test_interval_needs_duration(self) -> None:
        markup = (
            '<Var name="n" type="number" />'
            '<div><OnInterval><Increment var="n" /></OnInterval></div>'
        )
        assert ErrorKind.INVALID_ATTRIBUTE in error_kinds(markup)

    def test_size_limit(self) -> None:
        limits = CompilerLimits(max_markup_bytes=10)
        assert error_kinds("<p>too long for the limit</p>", limits=limits) == [
            ErrorKind.LIMIT_EXCEEDED
        ]

    def test_component_limit(self) -> None:
        limits = CompilerLimits(max_components=1)
        markup = "<ProfilePhoto /><DisplayName />"
        assert error_kinds(markup, limits=limits) == [ErrorKind.LIMIT_EXCEEDED]

    def test_errors_are_collected(self) -> None:
        kinds = error_kinds('<Bogus /><ShowVar name="x" />')
        assert kinds == [ErrorKind.UNKNOWN_TAG, ErrorKind.UNDECLARED_VARIABLE]


class TestControlFlowCompilation:
    def test_if_chain_grouped_into_fragment_island(self) -> None:
        template = compile_ok(
            """
            <Var name="n" type="number" initial="2" />
            <If data="$vars.n" greaterThan="5">big</If>
            <ElseIf data="$vars.n" equals="2">two</ElseIf>
            <Else>small</Else>
            """
        )
        [island] = template.islands
        assert island.component == FRAGMENT_TAG
        assert [child.tag for child in island.node.children] == ["If", "ElseIf", "Else"]

    def test_static_condition_is_not_an_island(self) -> None:
        template = compile_ok('<If data="owner.name"><p>hi</p></If>')
        assert template.islands == []

    def test_foreach_locals_are_visible(self) -> None:
        template = compile_ok(
            """
            <Var name="colors" type="array" initial='["red","blue"]' />
            <ul><ForEach var="colors" item="color"><li>{color}</li></ForEach></ul>
            """
        )
        [island] = template.islands
        assert island.component == "ForEach"
        assert template.variables[0].initial == ["red", "blue"]

    def test_components_become_component_islands(self) -> None:
        template = compile_ok('<ProfilePhoto size="md" />')
        [island] = template.islands
        assert island.kind == IslandKind.COMPONENT
        assert island.props == {"size": "md"}

    def test_extra_components(self) -> None:
        limits = CompilerLimits(extra_components=["ShoutBox"])
        template = compile_ok("<ShoutBox />", limits=limits)
        assert template.islands[0].component == "ShoutBox"

    def test_lowercase_dsl_tags_are_canonicalised(self) -> None:
        template = compile_ok('<var name="n" type="number"></var><showvar name="n"></showvar>')
        assert template.islands[0].component == "ShowVar"


class TestEventBodies:
    def test_top_level_actions_warn(self) -> None:
        result = compile_template('<Var name="n" type="number" /><Increment var="n" />')
        assert result.success
        assert any("outside an event handler" in w for w in result.warnings)

    def test_extract_becomes_initializer(self) -> None:
        template = compile_ok(
            """
            <Var name="profile" type="object" initial='{"name": "Ada"}' />
            <Extract from="profile"><Property path="name" as="who" /></Extract>
            """
        )
        [step] = template.initializers
        assert isinstance(step, ActionInvocation)
        assert step.entries == [{"path": "name", "as": "who"}]
        assert [v.name for v in template.variables] == ["profile", "who"]
        assert template.variables[1].type == VariableType.OBJECT
        assert template.variables[1].implicit

    def test_interval(self) -> None:
        template = compile_ok(
            '<Var name="n" type="number" />'
            '<div><OnInterval seconds="2"><Increment var="n" /></OnInterval></div>'
        )
        binding = template.islands[0].bindings[0]
        assert binding.event_kind == EventKind.INTERVAL
        assert binding.interval_ms == 2000

    def test_sequence_steps(self) -> None:
        template = compile_ok(
            """
            <Var name="s" type="string" />
            <button><OnClick><Sequence>
              <Set var="s" value="a" />
              <Delay milliseconds="500" />
              <Set var="s" value="b" />
            </Sequence></OnClick></button>
            """
        )
        [sequence] = template.islands[0].bindings[0].actions
        assert isinstance(sequence, SequenceActions)
        assert [step.delay_ms for step in sequence.steps] == [0, 500]
        assert sequence.total_delay_ms == 500

    def test_switch_in_handler(self) -> None:
        template = compile_ok(
            """
            <Var name="mode" type="string" initial="a" />
            <button><OnClick><Switch var="mode">
              <Case value="a"><Set var="mode" value="b" /></Case>
              <Default><Set var="mode" value="a" /></Default>
            </Switch></OnClick></button>
            """
        )
        [switch] = template.islands[0].bindings[0].actions
        assert isinstance(switch, SwitchActions)
        assert switch.value == "$vars.mode"
        assert [case.value for case in switch.cases] == ["a", None]

    def test_conditional_chain_in_handler(self) -> None:
        template = compile_ok(
            """
            <Var name="n" type="number" />
            <button><OnClick>
              <If data="$vars.n" greaterThan="2"><Reset var="n" /></If>
              <Else><Increment var="n" /></Else>
            </OnClick></button>
            """
        )
        [chain] = template.islands[0].bindings[0].actions
        assert [branch.condition is None for branch in chain.branches] == [False, True]
