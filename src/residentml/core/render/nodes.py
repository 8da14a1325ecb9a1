"""
Render tree produced by the control-flow renderer.

Unlike ``TemplateNode``, a render node holds concrete values: conditions are
decided, loops unrolled, placeholders substituted. Event handlers stay
attached to the element they were declared in, together with the loop
locals visible at that point.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from residentml.core.ir.actions import EventBinding, EventKind
from residentml.core.ir.template import TEXT_TAG


@dataclass
class BoundHandler:
    """An event binding plus the loop locals captured where it was rendered."""

    binding: EventBinding
    locals: dict[str, Any] = field(default_factory=dict)


@dataclass
class RenderNode:
    """
    One node of the render tree.

    Attributes:
        tag: HTML tag, ``#text`` or ``#root``
        attributes: Final attribute values
        children: Child nodes
        text: Content of text nodes
        handlers: Event handlers by event kind, in declaration order
        island_id: Set on island placeholders
        component: Resident component mounted into this element
    """

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    children: list[RenderNode] = field(default_factory=list)
    text: str | None = None
    handlers: dict[EventKind, list[BoundHandler]] = field(default_factory=dict)
    island_id: str | None = None
    component: str | None = None

    @classmethod
    def text_node(cls, text: str) -> RenderNode:
        return cls(tag=TEXT_TAG, text=text)

    @property
    def is_text(self) -> bool:
        return self.tag == TEXT_TAG

    def add_handler(self, event_kind: EventKind, handler: BoundHandler) -> None:
        self.handlers.setdefault(event_kind, []).append(handler)

    def walk(self) -> Iterator[RenderNode]:
        """Nodes of the subtree in document order, self included."""
        yield self
        for child in self.children:
            yield from child.walk()

    def text_content(self) -> str:
        if self.is_text:
            return self.text or ""
        return "".join(child.text_content() for child in self.children)

    def find_all(
        self,
        tag: str | None = None,
        predicate: Callable[[RenderNode], bool] | None = None,
        **attributes: str,
    ) -> list[RenderNode]:
        """Descendants (and self) matching the tag, attributes and predicate.

        Attribute names use underscores for dashes: ``data_var="n"``.
        """
        wanted = {name.replace("_", "-"): value for name, value in attributes.items()}
        return [
            node
            for node in self.walk()
            if (tag is None or node.tag == tag)
            and all(node.attributes.get(k) == v for k, v in wanted.items())
            and (predicate is None or predicate(node))
        ]

    def find(
        self,
        tag: str | None = None,
        predicate: Callable[[RenderNode], bool] | None = None,
        **attributes: str,
    ) -> RenderNode | None:
        matches = self.find_all(tag, predicate, **attributes)
        return matches[0] if matches else None
