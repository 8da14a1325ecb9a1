"""
Property-based tests using Hypothesis.

These tests verify invariants across a wide range of inputs: compiling
untrusted markup never crashes, expressions only fail with EvalError,
rendered values are always escaped, and island ids are stable.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from residentml.core.errors import EvalError
from residentml.core.expression_lang import evaluate, stringify
from residentml.core.markup import compile_template
from residentml.core.render import ControlFlowRenderer, to_html
from residentml.core.state import VariableStore

_TAGS = ["div", "p", "span", "If", "Show", "ForEach", "ShowVar", "Bio"]
_ATTRS = ["name", "var", "data", "when", "value", "equals", "class"]
_ATTR_VALUES = ["count", "$vars.count", "items", "0", "owner.id", "{item}", ""]


@st.composite
def markup_trees(draw: st.DrawFn, depth: int = 0) -> str:
    """Random nestings of known tags with plausible attributes."""
    if depth > 3 or draw(st.booleans()):
        return draw(st.text(alphabet="ab {}<>&$.", max_size=8))
    tag = draw(st.sampled_from(_TAGS))
    attrs = draw(
        st.dictionaries(st.sampled_from(_ATTRS), st.sampled_from(_ATTR_VALUES), max_size=2)
    )
    rendered_attrs = "".join(f' {k}="{v}"' for k, v in attrs.items())
    children = draw(st.lists(markup_trees(depth + 1), max_size=3))
    return f"<{tag}{rendered_attrs}>{''.join(children)}</{tag}>"


_DECLARATIONS = (
    '<Var name="count" type="number" initial="0" />'
    '<Var name="items" type="array" initial="[1,2]" />'
)


class TestCompilerProperties:
    @given(st.text(max_size=500))
    @settings(max_examples=200)
    def test_compile_never_crashes_on_arbitrary_text(self, text: str) -> None:
        """Invariant: compile_template reports problems, it never raises."""
        result = compile_template(text)
        assert result.success == (result.template is not None)

    @given(markup_trees())
    @settings(max_examples=150)
    def test_compile_and_render_random_trees(self, body: str) -> None:
        """Invariant: whatever compiles also renders."""
        result = compile_template(_DECLARATIONS + body)
        if not result.success:
            assert result.errors
            return
        compiled = result.unwrap()
        store = VariableStore(compiled.variables)
        tree = ControlFlowRenderer(store, islands=compiled.islands).render_document(compiled)
        to_html(tree)

    @given(markup_trees())
    @settings(max_examples=100)
    def test_island_ids_are_stable(self, body: str) -> None:
        """Invariant: compiling the same markup twice yields the same islands."""
        first = compile_template(_DECLARATIONS + body)
        second = compile_template(_DECLARATIONS + body)
        if first.success:
            assert [i.id for i in first.unwrap().islands] == [
                i.id for i in second.unwrap().islands
            ]


class TestEvaluatorProperties:
    @given(st.text(max_size=200))
    @settings(max_examples=300)
    def test_only_eval_errors_escape(self, source: str) -> None:
        """Invariant: evaluation either succeeds or raises EvalError."""
        try:
            evaluate(source, {"count": 3, "items": [1, 2]})
        except EvalError:
            pass

    @given(st.integers(-(10**9), 10**9), st.integers(-(10**9), 10**9))
    def test_integer_arithmetic(self, a: int, b: int) -> None:
        scope = {"a": a, "b": b}
        assert evaluate("$vars.a + $vars.b", scope) == a + b
        assert evaluate("$vars.a * $vars.b", scope) == a * b
        assert evaluate("$vars.a > $vars.b", scope) == (a > b)

    @given(st.integers())
    def test_stringify_integers(self, n: int) -> None:
        assert stringify(n) == str(n)


class TestRenderProperties:
    @given(st.text(max_size=100))
    @settings(max_examples=150)
    def test_show_var_output_is_escaped(self, value: str) -> None:
        """Invariant: a variable's text never becomes markup."""
        compiled = compile_template(
            '<Var name="who" type="string" /><p><ShowVar name="who" /></p>'
        ).unwrap()
        store = VariableStore(compiled.variables)
        store.set("who", value)
        renderer = ControlFlowRenderer(store, islands=compiled.islands)
        html = str(to_html(renderer.render_document(compiled)))
        body = html.split('data-var="who">', 1)[1].split("</span>", 1)[0]
        assert "<" not in body
        assert ">" not in body
