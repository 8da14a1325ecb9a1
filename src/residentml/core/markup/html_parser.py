"""
Markup tokenisation into template nodes.

Built on ``html.parser.HTMLParser``, which lowers tag and attribute names and
unescapes entities. Tag names are kept lower case here; the compiler resolves
them to canonical names through the tag registry.

Author markup is untrusted. Inline event handler attributes (``on*``) and
script URLs are dropped with a warning; ``<script>`` itself survives parsing
so the compiler can reject it as an unknown tag.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser

from residentml.core.ir.template import ROOT_TAG, TEXT_TAG, SourceSpan, TemplateNode
from residentml.core.markup.tags import VOID_TAGS

logger = logging.getLogger(__name__)

URL_ATTRIBUTES = frozenset({"href", "src", "action", "formaction", "xlink:href", "poster"})
_EVENT_HANDLER_RE = re.compile(r"^on[a-z]+$")
_UNSAFE_URL_RE = re.compile(r"^(javascript|vbscript|data:text/html)", re.IGNORECASE)
_URL_NOISE_RE = re.compile(r"[\s\x00-\x1f]+")

# Document wrappers whose children are hoisted into the parent
_TRANSPARENT_TAGS = frozenset({"html", "body"})


class MarkupLimitError(Exception):
    """Markup nests too deeply or has too many nodes."""

    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column


@dataclass
class _Element:
    tag: str
    attributes: dict[str, str]
    line: int
    column: int
    children: list[_Element] = field(default_factory=list)
    text: str | None = None
    end_line: int | None = None
    end_column: int | None = None

    def freeze(self) -> TemplateNode:
        span = SourceSpan(
            line=self.line,
            column=self.column,
            end_line=self.end_line,
            end_column=self.end_column,
        )
        return TemplateNode(
            tag=self.tag,
            attributes=self.attributes,
            children=[child.freeze() for child in self.children],
            span=span,
            text=self.text,
        )


@dataclass
class ParsedMarkup:
    """Result of ``parse_markup``."""

    root: TemplateNode
    warnings: list[str] = field(default_factory=list)
    node_count: int = 0
    max_depth: int = 0


class _MarkupParser(HTMLParser):
    def __init__(self, max_depth: int | None, max_nodes: int | None) -> None:
        super().__init__(convert_charrefs=True)
        self.root = _Element(ROOT_TAG, {}, 1, 1)
        self.stack: list[_Element] = [self.root]
        self.warnings: list[str] = []
        self.node_count = 0
        self.max_depth_seen = 0
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self._head_depth = 0

    # -- Position helpers --

    def _position(self) -> tuple[int, int]:
        line, offset = self.getpos()
        return line, offset + 1

    def _warn(self, message: str) -> None:
        line, column = self._position()
        self.warnings.append(f"{line}:{column}: {message}")

    # -- HTMLParser callbacks --

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._open(tag, attrs, self_closing=tag in VOID_TAGS)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._open(tag, attrs, self_closing=True)

    def handle_endtag(self, tag: str) -> None:
        if tag == "head":
            self._head_depth = max(0, self._head_depth - 1)
            return
        if self._head_depth or tag in _TRANSPARENT_TAGS or tag in VOID_TAGS:
            return

        for position in range(len(self.stack) - 1, 0, -1):
            if self.stack[position].tag == tag:
                line, column = self._position()
                for element in self.stack[position:]:
                    element.end_line, element.end_column = line, column
                if position != len(self.stack) - 1:
                    unclosed = ", ".join(e.tag for e in self.stack[position + 1 :])
                    self._warn(f"Closing </{tag}> also closes unclosed <{unclosed}>")
                del self.stack[position:]
                return
        self._warn(f"Ignoring stray closing tag </{tag}>")

    def handle_data(self, data: str) -> None:
        if self._head_depth:
            return
        if not data.strip() and "\n" in data:
            return
        line, column = self._position()
        parent = self.stack[-1]
        if parent.children and parent.children[-1].tag == TEXT_TAG:
            parent.children[-1].text = (parent.children[-1].text or "") + data
            return
        parent.children.append(_Element(TEXT_TAG, {}, line, column, text=data))

    # -- Tree building --

    def _open(self, tag: str, attrs: list[tuple[str, str | None]], *, self_closing: bool) -> None:
        if tag == "head":
            if not self_closing:
                self._head_depth += 1
            return
        if self._head_depth or tag in _TRANSPARENT_TAGS:
            return

        line, column = self._position()
        element = _Element(tag, self._clean_attributes(tag, attrs), line, column)
        self.stack[-1].children.append(element)

        self.node_count += 1
        depth = len(self.stack)
        self.max_depth_seen = max(self.max_depth_seen, depth)
        if self.max_nodes is not None and self.node_count > self.max_nodes:
            raise MarkupLimitError(f"Template has more than {self.max_nodes} nodes", line, column)
        if self.max_depth is not None and depth > self.max_depth:
            raise MarkupLimitError(
                f"Template nesting is deeper than {self.max_depth} levels", line, column
            )

        if not self_closing:
            self.stack.append(element)

    def _clean_attributes(self, tag: str, attrs: list[tuple[str, str | None]]) -> dict[str, str]:
        cleaned: dict[str, str] = {}
        for name, value in attrs:
            value = value if value is not None else ""
            if _EVENT_HANDLER_RE.match(name):
                self._warn(f"Removed event handler attribute '{name}' on <{tag}>")
                continue
            if name in URL_ATTRIBUTES and _UNSAFE_URL_RE.match(_URL_NOISE_RE.sub("", value)):
                self._warn(f"Removed unsafe URL in '{name}' on <{tag}>")
                continue
            cleaned[name] = value
        return cleaned


def parse_markup(
    markup: str,
    *,
    max_depth: int | None = None,
    max_nodes: int | None = None,
) -> ParsedMarkup:
    """
    Parse author markup into a ``#root`` template node.

    A full HTML document is accepted; only the body content is kept.

    Raises:
        MarkupLimitError: If ``max_depth`` or ``max_nodes`` is exceeded.
    """
    parser = _MarkupParser(max_depth, max_nodes)
    parser.feed(markup)
    parser.close()

    if len(parser.stack) > 1:
        unclosed = ", ".join(f"<{e.tag}>" for e in parser.stack[1:])
        parser.warnings.append(f"Unclosed tags closed at end of markup: {unclosed}")

    for warning in parser.warnings:
        logger.debug("Markup warning: %s", warning)

    return ParsedMarkup(
        root=parser.root.freeze(),
        warnings=parser.warnings,
        node_count=parser.node_count,
        max_depth=parser.max_depth_seen,
    )
