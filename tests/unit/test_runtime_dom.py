"""Tests for the hydration DOM and the timer primitives."""

from __future__ import annotations

import asyncio
import logging

import pytest

from residentml.core.render import RenderNode
from residentml_ui.runtime import (
    CancellationToken,
    Document,
    Element,
    IntervalTimer,
    TextNode,
    build_nodes,
    document_from_html,
    document_from_render_tree,
    parse_fragment,
)


class TestElement:
    def test_parse_fragment(self) -> None:
        [p] = parse_fragment('<p class="a">x<br>y</p>')
        assert isinstance(p, Element)
        assert p.attributes == {"class": "a"}
        assert [type(c).__name__ for c in p.children] == ["TextNode", "Element", "TextNode"]
        assert p.text_content == "xy"

    def test_inner_html_escapes_text(self) -> None:
        div = Element("div")
        div.append_child(TextNode("<script>"))
        assert div.inner_html == "&lt;script&gt;"
        assert div.to_html() == "<div>&lt;script&gt;</div>"

    def test_set_inner_html_replaces_children(self) -> None:
        div = Element("div")
        div.append_child(TextNode("old"))
        div.set_inner_html("<b>new</b>")
        assert div.inner_html == "<b>new</b>"

    def test_connectivity(self) -> None:
        document = Document()
        container = Element("div", {"id": "profile"})
        child = Element("span")
        container.append_child(child)
        assert not child.is_connected
        document.append_child(container)
        assert child.is_connected
        assert document.get_element_by_id("profile") is container
        child.detach()
        assert not child.is_connected
        assert container.children == []

    def test_append_moves_node(self) -> None:
        first, second, node = Element("div"), Element("div"), Element("i")
        first.append_child(node)
        second.append_child(node)
        assert first.children == []
        assert node.parent is second

    def test_query_attribute(self) -> None:
        document = document_from_html(
            '<div id="c"><div data-island="a"></div><p><span data-island="b"></span></p></div>'
        )
        found = document.query_attribute("data-island")
        assert [e.get_attribute("data-island") for e in found] == ["a", "b"]
        assert len(document.query_attribute("data-island", "b")) == 1

    def test_event_listeners(self) -> None:
        button = Element("button")
        seen: list[object] = []
        button.add_event_listener("click", seen.append)
        assert button.dispatch_event("click", 5) == 1
        button.remove_event_listener("click", seen.append)
        assert button.dispatch_event("click", 6) == 0
        assert seen == [5]


class TestBuildNodes:
    def test_root_contributes_children_only(self) -> None:
        tree = RenderNode(
            tag="#root",
            children=[
                RenderNode(
                    tag="p", attributes={"class": "x"}, children=[RenderNode.text_node("a")]
                ),
                RenderNode.text_node("b"),
            ],
        )
        nodes = build_nodes(tree)
        assert len(nodes) == 2
        assert isinstance(nodes[0], Element)
        assert nodes[0].to_html() == '<p class="x">a</p>'

    def test_on_element_sees_pairs(self) -> None:
        tree = RenderNode(tag="#root", children=[RenderNode(tag="button")])
        pairs: list[tuple[str, str]] = []
        build_nodes(tree, lambda node, element: pairs.append((node.tag, element.tag)))
        assert pairs == [("button", "button")]

    def test_document_from_render_tree(self) -> None:
        tree = RenderNode(tag="#root", children=[RenderNode.text_node("hi")])
        document = document_from_render_tree(tree, "page")
        container = document.get_element_by_id("page")
        assert container is not None
        assert container.text_content == "hi"
        assert document.to_html() == '<div id="page">hi</div>'


class TestCancellationToken:
    def test_callbacks_run_once(self) -> None:
        token = CancellationToken()
        calls: list[str] = []
        token.on_cancel(lambda: calls.append("a"))
        token.cancel()
        token.cancel()
        assert calls == ["a"]
        assert token.cancelled

    def test_late_callback_runs_immediately(self) -> None:
        token = CancellationToken()
        token.cancel()
        calls: list[str] = []
        token.on_cancel(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_children_follow_parent(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        grandchild = child.child()
        grandchild.cancel()
        assert not child.cancelled
        parent.cancel()
        assert child.cancelled

    def test_failing_callback_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        token = CancellationToken()
        calls: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        token.on_cancel(broken)
        token.on_cancel(lambda: calls.append("after"))
        with caplog.at_level(logging.ERROR):
            token.cancel()
        assert calls == ["after"]
        assert "Cancellation callback raised" in caplog.text

    def test_unregistered_callback_never_runs(self) -> None:
        token = CancellationToken()
        calls: list[str] = []
        remove = token.on_cancel(lambda: calls.append("gone"))
        assert token.pending_callbacks == 1
        remove()
        remove()
        assert token.pending_callbacks == 0
        token.cancel()
        assert calls == []

    def test_released_child_detaches_from_parent(self) -> None:
        parent = CancellationToken()
        children = [parent.child() for _ in range(5)]
        assert parent.pending_callbacks == 5
        for child in children:
            child.release()
        assert parent.pending_callbacks == 0
        parent.cancel()
        assert not any(child.cancelled for child in children)


async def _wait_until_stopped(timer: IntervalTimer, limit: float = 2.0) -> None:
    waited = 0.0
    while timer.running and waited < limit:
        await asyncio.sleep(0.005)
        waited += 0.005


class TestIntervalTimer:
    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            IntervalTimer(0, lambda: None, CancellationToken())

    @pytest.mark.asyncio
    async def test_ticks_until_cancelled(self) -> None:
        token = CancellationToken()
        calls: list[int] = []

        def tick() -> None:
            calls.append(len(calls))
            if len(calls) == 3:
                token.cancel()

        timer = IntervalTimer(5, tick, token)
        timer.start()
        assert timer.running
        await _wait_until_stopped(timer)
        assert timer.ticks == 3
        assert not timer.running

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_running(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        token = CancellationToken()
        calls: list[int] = []

        def tick() -> None:
            calls.append(1)
            if len(calls) == 2:
                token.cancel()
            raise RuntimeError("tick failed")

        timer = IntervalTimer(5, tick, token)
        with caplog.at_level(logging.ERROR):
            timer.start()
            await _wait_until_stopped(timer)
        assert len(calls) == 2
        assert "timer keeps running" in caplog.text

    @pytest.mark.asyncio
    async def test_start_after_cancel_is_noop(self) -> None:
        token = CancellationToken()
        token.cancel()
        timer = IntervalTimer(5, lambda: None, token)
        timer.start()
        assert not timer.running

    @pytest.mark.asyncio
    async def test_stop_unregisters_from_token(self) -> None:
        token = CancellationToken()
        for _ in range(10):
            timer = IntervalTimer(1000, lambda: None, token)
            timer.start()
            assert token.pending_callbacks == 1
            timer.stop()
            assert token.pending_callbacks == 0
        assert not token.cancelled
