"""
Minimal mutable DOM for the hydration runtime.

The server render produces a document of placeholders; hydration mounts
island roots into those elements, replaces their children, and tracks
lifecycle attributes (``data-hydrated``, ``data-hydrating``...). This module
provides the small slice of DOM behaviour that needs: attribute access,
child replacement, connectivity, lookup by id or attribute, event
listeners, ``inner_html`` parsing and serialisation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from html.parser import HTMLParser
from typing import Any

from markupsafe import Markup, escape

from residentml.core.ir.template import FRAGMENT_TAG, ROOT_TAG
from residentml.core.markup.tags import VOID_TAGS
from residentml.core.render.html import render_attributes
from residentml.core.render.nodes import RenderNode

logger = logging.getLogger(__name__)

Listener = Callable[[Any], object]


class Node:
    """Base for elements and text nodes."""

    def __init__(self) -> None:
        self.parent: Element | None = None

    @property
    def is_connected(self) -> bool:
        """True while the node is reachable from a ``Document``."""
        node: Node | None = self
        while node is not None:
            if isinstance(node, Document):
                return True
            node = node.parent
        return False

    def detach(self) -> None:
        if self.parent is not None:
            self.parent.remove_child(self)

    def to_html(self) -> Markup:
        raise NotImplementedError

    @property
    def text_content(self) -> str:
        raise NotImplementedError


class TextNode(Node):
    def __init__(self, text: str) -> None:
        super().__init__()
        self.text = text

    def to_html(self) -> Markup:
        return escape(self.text)

    @property
    def text_content(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"TextNode({self.text!r})"


class Element(Node):
    """An element with attributes, children and event listeners."""

    def __init__(self, tag: str, attributes: dict[str, str] | None = None) -> None:
        super().__init__()
        self.tag = tag
        self.attributes: dict[str, str] = dict(attributes or {})
        self.children: list[Node] = []
        self.listeners: dict[str, list[Listener]] = {}

    def __repr__(self) -> str:
        return f"<Element {self.tag} {self.attributes}>"

    # -- Attributes --

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.attributes[name] = value

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def remove_attribute(self, name: str) -> None:
        self.attributes.pop(name, None)

    @property
    def id(self) -> str | None:
        return self.attributes.get("id")

    # -- Children --

    def append_child(self, node: Node) -> Node:
        node.detach()
        node.parent = self
        self.children.append(node)
        return node

    def remove_child(self, node: Node) -> None:
        self.children.remove(node)
        node.parent = None

    def clear_children(self) -> None:
        for child in self.children:
            child.parent = None
        self.children = []

    def replace_children(self, nodes: list[Node]) -> None:
        self.clear_children()
        for node in nodes:
            self.append_child(node)

    def iter_elements(self) -> Iterator[Element]:
        """Descendant elements in document order (self excluded)."""
        for child in self.children:
            if isinstance(child, Element):
                yield child
                yield from child.iter_elements()

    def query_all(self, predicate: Callable[[Element], bool]) -> list[Element]:
        return [element for element in self.iter_elements() if predicate(element)]

    def query_attribute(self, name: str, value: str | None = None) -> list[Element]:
        """Descendants carrying attribute ``name`` (and ``value`` when given)."""
        return self.query_all(
            lambda e: e.has_attribute(name) and (value is None or e.attributes[name] == value)
        )

    # -- Content --

    @property
    def text_content(self) -> str:
        return "".join(child.text_content for child in self.children)

    @property
    def inner_html(self) -> Markup:
        return Markup("").join(child.to_html() for child in self.children)

    def set_inner_html(self, markup: str) -> None:
        """Replace the children with parsed markup."""
        self.replace_children(parse_fragment(markup))

    def to_html(self) -> Markup:
        attributes = render_attributes(self.attributes)
        if self.tag in VOID_TAGS:
            return Markup("<{}{}>").format(self.tag, attributes)
        return Markup("<{}{}>{}</{}>").format(self.tag, attributes, self.inner_html, self.tag)

    # -- Events --

    def add_event_listener(self, event: str, listener: Listener) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: Listener) -> None:
        listeners = self.listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, event: str, value: Any = None) -> int:
        """Call the listeners for ``event``; returns how many ran."""
        listeners = list(self.listeners.get(event, []))
        for listener in listeners:
            listener(value)
        return len(listeners)


class Document(Element):
    """Root of a DOM tree; everything below it is connected."""

    def __init__(self) -> None:
        super().__init__("#document")

    def get_element_by_id(self, element_id: str) -> Element | None:
        for element in self.iter_elements():
            if element.id == element_id:
                return element
        return None

    def to_html(self) -> Markup:
        return self.inner_html


class _FragmentParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Element(FRAGMENT_TAG)
        self._stack: list[Element] = [self.root]

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        element = Element(tag, {name: value or "" for name, value in attrs})
        self._stack[-1].append_child(element)
        if tag not in VOID_TAGS:
            self._stack.append(element)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        element = Element(tag, {name: value or "" for name, value in attrs})
        self._stack[-1].append_child(element)

    def handle_endtag(self, tag: str) -> None:
        for index in range(len(self._stack) - 1, 0, -1):
            if self._stack[index].tag == tag:
                del self._stack[index:]
                return
        logger.debug("Stray </%s> ignored", tag)

    def handle_data(self, data: str) -> None:
        if not data.strip() and "\n" in data:
            return
        self._stack[-1].append_child(TextNode(data))


def parse_fragment(markup: str) -> list[Node]:
    """Parse an HTML fragment into detached nodes."""
    parser = _FragmentParser()
    parser.feed(markup)
    parser.close()
    nodes = list(parser.root.children)
    parser.root.clear_children()
    return nodes


def build_nodes(
    node: RenderNode,
    on_element: Callable[[RenderNode, Element], None] | None = None,
) -> list[Node]:
    """
    Convert a render tree into DOM nodes.

    Root and fragment nodes contribute only their children. ``on_element``
    sees every created element next to the render node it came from, which
    is where event handlers get wired to listeners.
    """
    if node.is_text:
        return [TextNode(node.text or "")]
    children: list[Node] = []
    for child in node.children:
        children.extend(build_nodes(child, on_element))
    if node.tag in (ROOT_TAG, FRAGMENT_TAG):
        return children

    element = Element(node.tag, node.attributes)
    for child in children:
        element.append_child(child)
    if on_element is not None:
        on_element(node, element)
    return [element]


def document_from_render_tree(root: RenderNode, container_id: str = "profile") -> Document:
    """The server-rendered page: a container div holding the rendered template."""
    document = Document()
    container = Element("div", {"id": container_id})
    document.append_child(container)
    for node in build_nodes(root):
        container.append_child(node)
    return document


def document_from_html(markup: str) -> Document:
    document = Document()
    for node in parse_fragment(markup):
        document.append_child(node)
    return document
