"""
Control-flow renderer.

Walks a compiled AST against a variable store and resident data, producing a
``RenderNode`` tree:

- If/ElseIf/Else, Show, Choose/When/Otherwise, IfOwner/IfVisitor and
  Switch/Case/Default decide which children exist; excluded branches are
  absent from the output, so their islands never mount.
- ForEach unrolls an array with a child scope per iteration.
- ShowVar, TInput and Checkbox produce concrete elements.
- Event tags attach handlers to the enclosing element.

Evaluation failures degrade to a false condition or an empty value and are
logged; rendering never aborts because of author data.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from residentml.core.errors import EvalError
from residentml.core.expression_lang.conditions import evaluate_condition, resolve_path
from residentml.core.expression_lang.evaluator import evaluate, is_number, stringify, to_number
from residentml.core.expression_lang.interpolation import interpolate
from residentml.core.expression_lang.scope import EvalScope, VariableReader
from residentml.core.ir.actions import (
    EVENT_TAGS,
    ActionInvocation,
    ActionKind,
    EventBinding,
    EventKind,
)
from residentml.core.ir.template import (
    FRAGMENT_TAG,
    ISLAND_TAG,
    ROOT_TAG,
    CompiledTemplate,
    Island,
    IslandKind,
    TemplateNode,
)
from residentml.core.markup.tags import TagKind, TagRegistry, default_registry
from residentml.core.render.nodes import BoundHandler, RenderNode

logger = logging.getLogger(__name__)

# Tags that never produce output
_SILENT_KINDS = frozenset({TagKind.VARIABLE, TagKind.ACTION, TagKind.TEMPORAL})

# Internal attributes not copied onto output elements
_INTERNAL_ATTRIBUTES = frozenset({"binding"})


def input_binding(var: str, island_id: str | None = None) -> EventBinding:
    """The change binding behind TInput and Checkbox: write the event value to ``var``."""
    prefix = f"{island_id}/" if island_id else ""
    return EventBinding(
        id=f"{prefix}input:{var}",
        event_kind=EventKind.CHANGE,
        actions=[
            ActionInvocation(
                kind=ActionKind.SET, target_var=var, params={"var": var, "value": "{value}"}
            )
        ],
    )


def format_value(value: Any, fmt: str | None = None, decimals: str | None = None) -> str:
    """ShowVar display rules.

    ``currency`` gives ``$1,234.50``, ``percent`` appends ``%``, ``date``
    renders epoch milliseconds or ISO strings as ``YYYY-MM-DD``.
    """
    places: int | None = None
    if decimals is not None and decimals.strip().isdigit():
        places = int(decimals)

    fmt = (fmt or "").lower()
    if fmt == "date":
        return _format_date(value)

    number = to_number(value) if not isinstance(value, bool) else None
    if fmt == "currency" and number is not None:
        return f"${number:,.{2 if places is None else places}f}"
    if fmt == "percent" and number is not None:
        text = stringify(number) if places is None else f"{number:.{places}f}"
        return f"{text}%"
    if places is not None and is_number(value):
        return f"{value:.{places}f}"
    return stringify(value)


def _format_date(value: Any) -> str:
    if is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC).date().isoformat()
        except (OverflowError, OSError, ValueError):
            return stringify(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date().isoformat()
        except ValueError:
            return value
    return stringify(value)


class ControlFlowRenderer:
    """
    Renders template nodes against one variable store.

    Args:
        store: Variable store (or any ``VariableReader``)
        resident_data: Host data (owner, viewer, posts, ...)
        registry: Tag registry used to classify canonical tag names
        islands: Islands referenced by ``#island`` nodes and event bindings
    """

    def __init__(
        self,
        store: VariableReader,
        resident_data: Mapping[str, Any] | None = None,
        registry: TagRegistry | None = None,
        islands: Iterable[Island] = (),
    ) -> None:
        self.store = store
        self.resident_data = resident_data or {}
        self.registry = registry or default_registry()
        self._islands: dict[str, Island] = {}
        self._bindings: dict[str, EventBinding] = {}
        self.add_islands(islands)

    def add_islands(self, islands: Iterable[Island]) -> None:
        for island in islands:
            self._islands[island.id] = island
            for binding in island.bindings:
                self._bindings[binding.id] = binding

    def scope(self, bindings: Mapping[str, Any] | None = None) -> EvalScope:
        return EvalScope(self.store, self.resident_data, bindings)

    # -- Entry points --

    def render_document(self, compiled: CompiledTemplate) -> RenderNode:
        """Render a whole template; islands appear inside their placeholders."""
        self.add_islands(compiled.islands)
        return self.render(compiled.ast)

    def render_island(self, island: Island) -> RenderNode:
        """Render the content of one island (what hydration mounts)."""
        self.add_islands([island])
        root = RenderNode(tag=ROOT_TAG)
        if island.kind == IslandKind.TEMPLATE:
            root.children = self._render_nodes([island.node], self.scope(), root, island.id)
        return root

    def render(self, node: TemplateNode, scope: EvalScope | None = None) -> RenderNode:
        scope = scope or self.scope()
        root = RenderNode(tag=ROOT_TAG)
        nodes = node.children if node.tag in (ROOT_TAG, FRAGMENT_TAG) else [node]
        root.children = self._render_nodes(nodes, scope, root, None)
        return root

    # -- Walking --

    def _render_nodes(
        self,
        nodes: Iterable[TemplateNode],
        scope: EvalScope,
        owner: RenderNode,
        island_id: str | None,
    ) -> list[RenderNode]:
        """Render siblings; If/ElseIf/Else chains are decided here."""
        output: list[RenderNode] = []
        chain_matched: bool | None = None  # None: no open chain

        for node in nodes:
            if node.tag in ("If", "ElseIf", "Else"):
                if node.tag == "If" or chain_matched is None:
                    chain_matched = False
                if chain_matched:
                    continue
                if node.tag == "Else" or self._condition(node, scope):
                    chain_matched = True
                    output.extend(self._render_nodes(node.children, scope, owner, island_id))
                continue
            if not (node.is_text and not (node.text or "").strip()):
                chain_matched = None
            output.extend(self._render_node(node, scope, owner, island_id))
        return output

    def _render_node(
        self,
        node: TemplateNode,
        scope: EvalScope,
        owner: RenderNode,
        island_id: str | None,
    ) -> list[RenderNode]:
        if node.is_text:
            return [RenderNode.text_node(interpolate(node.text or "", scope))]

        tag = node.tag
        if tag == ISLAND_TAG:
            return [self._render_placeholder(node.attributes.get("id", ""), scope)]
        if tag == FRAGMENT_TAG:
            return self._render_nodes(node.children, scope, owner, island_id)
        if tag in EVENT_TAGS:
            self._attach_handler(node, scope, owner)
            return []

        kind = self.registry.kind_of(tag)
        if kind in _SILENT_KINDS:
            return []
        if kind == TagKind.CONTROL:
            return self._render_control(node, scope, owner, island_id)
        if tag == "ShowVar":
            return [self._render_show_var(node, scope)]
        if tag == "TInput":
            return [self._render_text_input(node, scope, island_id)]
        if tag == "Checkbox":
            return [self._render_checkbox(node, scope, island_id)]
        if kind == TagKind.COMPONENT:
            return [self._render_component(node, scope)]

        element = RenderNode(tag=tag, attributes=self._attributes(node, scope))
        element.children = self._render_nodes(node.children, scope, element, island_id)
        return [element]

    def _attributes(self, node: TemplateNode, scope: EvalScope) -> dict[str, str]:
        return {
            name: interpolate(value, scope)
            for name, value in node.attributes.items()
            if name not in _INTERNAL_ATTRIBUTES
        }

    # -- Control flow --

    def _condition(self, node: TemplateNode, scope: EvalScope) -> bool:
        try:
            return evaluate_condition(node.attributes, scope)
        except EvalError as e:
            logger.debug("Condition on <%s> treated as false: %s", node.tag, e.message)
            return False

    def _render_control(
        self,
        node: TemplateNode,
        scope: EvalScope,
        owner: RenderNode,
        island_id: str | None,
    ) -> list[RenderNode]:
        tag = node.tag
        if tag in ("Show", "When"):
            if not self._condition(node, scope):
                return []
            return self._render_nodes(node.children, scope, owner, island_id)
        if tag in ("Otherwise", "Case", "Default"):
            return self._render_nodes(node.children, scope, owner, island_id)
        if tag == "Choose":
            return self._render_choose(node, scope, owner, island_id)
        if tag in ("IfOwner", "IfVisitor"):
            if self._viewer_is_owner() != (tag == "IfOwner"):
                return []
            return self._render_nodes(node.children, scope, owner, island_id)
        if tag == "Switch":
            return self._render_switch(node, scope, owner, island_id)
        if tag == "ForEach":
            return self._render_for_each(node, scope, owner, island_id)
        return []

    def _render_choose(
        self, node: TemplateNode, scope: EvalScope, owner: RenderNode, island_id: str | None
    ) -> list[RenderNode]:
        for child in node.children:
            if child.tag == "When" and self._condition(child, scope):
                return self._render_nodes(child.children, scope, owner, island_id)
            if child.tag == "Otherwise":
                return self._render_nodes(child.children, scope, owner, island_id)
        return []

    def _viewer_is_owner(self) -> bool:
        owner = self.resident_data.get("owner")
        viewer = self.resident_data.get("viewer")
        if not isinstance(owner, Mapping) or not isinstance(viewer, Mapping):
            return False
        return viewer.get("id") is not None and viewer.get("id") == owner.get("id")

    def _render_switch(
        self, node: TemplateNode, scope: EvalScope, owner: RenderNode, island_id: str | None
    ) -> list[RenderNode]:
        source = node.attributes.get("value") or f"$vars.{node.attributes.get('var', '')}"
        try:
            value = stringify(evaluate(source, scope))
        except EvalError as e:
            logger.debug("Switch value %r treated as empty: %s", source, e.message)
            value = ""
        fallback: TemplateNode | None = None
        for child in node.children:
            if child.tag == "Case" and child.attributes.get("value") == value:
                return self._render_nodes(child.children, scope, owner, island_id)
            if child.tag == "Default" and fallback is None:
                fallback = child
        if fallback is None:
            return []
        return self._render_nodes(fallback.children, scope, owner, island_id)

    def _render_for_each(
        self, node: TemplateNode, scope: EvalScope, owner: RenderNode, island_id: str | None
    ) -> list[RenderNode]:
        items = resolve_path(node.attributes.get("var", ""), scope)
        if items is None:
            return []
        if not isinstance(items, list):
            logger.debug("ForEach over non-array %r skipped", node.attributes.get("var"))
            return []

        item_name = node.attributes.get("item") or "item"
        index_name = node.attributes.get("index") or "index"
        output: list[RenderNode] = []
        for index, item in enumerate(items):
            child_scope = scope.child(**{item_name: item, index_name: index})
            output.extend(self._render_nodes(node.children, child_scope, owner, island_id))
        return output

    # -- Leaf tags --

    def _render_show_var(self, node: TemplateNode, scope: EvalScope) -> RenderNode:
        name = node.attributes.get("name") or node.attributes.get("var", "")
        value = resolve_path(name, scope)
        if value is None:
            text = node.attributes.get("fallback", "")
        else:
            attrs = node.attributes
            text = format_value(value, attrs.get("format"), attrs.get("decimals"))
        attributes = {"data-var": name}
        if "class" in node.attributes:
            attributes["class"] = node.attributes["class"]
        return RenderNode(tag="span", attributes=attributes, children=[RenderNode.text_node(text)])

    def _render_text_input(
        self, node: TemplateNode, scope: EvalScope, island_id: str | None
    ) -> RenderNode:
        attrs = node.attributes
        var = attrs.get("var", "")
        value = stringify(resolve_path(var, scope))
        multiline = attrs.get("multiline", "false").lower() in ("", "true")

        attributes = {"data-var": var, "name": var}
        for key in ("placeholder", "class"):
            if key in attrs:
                attributes[key] = attrs[key]
        if multiline:
            attributes["rows"] = attrs.get("rows", "3")
            element = RenderNode(
                tag="textarea", attributes=attributes, children=[RenderNode.text_node(value)]
            )
        else:
            attributes["type"] = attrs.get("type", "text")
            attributes["value"] = value
            element = RenderNode(tag="input", attributes=attributes)
        element.add_handler(EventKind.CHANGE, BoundHandler(input_binding(var, island_id)))
        self._attach_children_handlers(node, scope, element)
        return element

    def _render_checkbox(
        self, node: TemplateNode, scope: EvalScope, island_id: str | None
    ) -> RenderNode:
        var = node.attributes.get("var", "")
        checkbox = RenderNode(
            tag="input", attributes={"type": "checkbox", "data-var": var, "name": var}
        )
        if resolve_path(var, scope) is True:
            checkbox.attributes["checked"] = ""
        checkbox.add_handler(EventKind.CHANGE, BoundHandler(input_binding(var, island_id)))
        self._attach_children_handlers(node, scope, checkbox)

        label = RenderNode(tag="label", children=[checkbox])
        if node.attributes.get("label"):
            label.children.append(RenderNode.text_node(" " + node.attributes["label"]))
        return label

    def _render_component(self, node: TemplateNode, scope: EvalScope) -> RenderNode:
        attributes = self._attributes(node, scope)
        attributes["data-component"] = node.tag
        return RenderNode(tag="div", attributes=attributes, component=node.tag)

    def _render_placeholder(self, island_id: str, scope: EvalScope) -> RenderNode:
        island = self._islands.get(island_id)
        if island is None:
            logger.warning("No island %r in this template; placeholder left empty", island_id)
            return RenderNode(tag="div", attributes={"data-island": island_id}, island_id=island_id)

        placeholder = RenderNode(
            tag="div",
            attributes={"data-island": island.id, "data-component": island.component},
            island_id=island.id,
            component=island.component if island.kind == IslandKind.COMPONENT else None,
        )
        if island.kind == IslandKind.TEMPLATE:
            placeholder.children = self._render_nodes([island.node], scope, placeholder, island.id)
        return placeholder

    # -- Events --

    def _attach_handler(self, node: TemplateNode, scope: EvalScope, owner: RenderNode) -> None:
        binding = self._bindings.get(node.attributes.get("binding", ""))
        if binding is None:
            logger.debug("<%s> has no compiled binding; ignored", node.tag)
            return
        owner.add_handler(binding.event_kind, BoundHandler(binding, scope.locals()))

    def _attach_children_handlers(
        self, node: TemplateNode, scope: EvalScope, element: RenderNode
    ) -> None:
        for child in node.children:
            if child.tag in EVENT_TAGS:
                self._attach_handler(child, scope, element)
