"""
residentml control-flow renderer.

Usage:
    from residentml.core.render import ControlFlowRenderer, to_html

    renderer = ControlFlowRenderer(store, resident_data)
    html = to_html(renderer.render_document(compiled))
"""

from residentml.core.render.html import to_html
from residentml.core.render.nodes import BoundHandler, RenderNode
from residentml.core.render.renderer import ControlFlowRenderer, format_value, input_binding

__all__ = [
    "BoundHandler",
    "ControlFlowRenderer",
    "RenderNode",
    "format_value",
    "input_binding",
    "to_html",
]
