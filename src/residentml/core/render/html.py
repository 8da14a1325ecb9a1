"""
HTML serialisation of render trees.

All text and attribute values pass through markupsafe, so author data can
never introduce markup.
"""

from __future__ import annotations

from markupsafe import Markup, escape

from residentml.core.ir.template import FRAGMENT_TAG, ROOT_TAG
from residentml.core.markup.tags import VOID_TAGS
from residentml.core.render.nodes import RenderNode

# Attributes rendered without a value when present
BOOLEAN_ATTRIBUTES = frozenset(
    {"checked", "disabled", "selected", "readonly", "required", "hidden"}
)


def render_attributes(attributes: dict[str, str]) -> Markup:
    parts = []
    for name, value in attributes.items():
        if name in BOOLEAN_ATTRIBUTES and value in ("", name, "true"):
            parts.append(Markup(" {}").format(name))
        else:
            parts.append(Markup(' {}="{}"').format(name, value))
    return Markup("").join(parts)


def to_html(node: RenderNode) -> Markup:
    """Serialise a render tree to safe HTML."""
    if node.is_text:
        return escape(node.text or "")
    inner = Markup("").join(to_html(child) for child in node.children)
    if node.tag in (ROOT_TAG, FRAGMENT_TAG):
        return inner
    attributes = render_attributes(node.attributes)
    if node.tag in VOID_TAGS:
        return Markup("<{}{}>").format(node.tag, attributes)
    return Markup("<{}{}>{}</{}>").format(node.tag, attributes, inner, node.tag)
