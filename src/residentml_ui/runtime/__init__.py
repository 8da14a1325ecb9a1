"""
Island hydration runtime.

Mounts the islands of a server-rendered template, keeps their DOM in sync
with the template's variable store and tears them down again.
"""

from residentml_ui.runtime.components import (
    Component,
    ComponentRegistry,
    MountedRoot,
    StaticComponent,
    TemplateIslandComponent,
    TemplateIslandRoot,
)
from residentml_ui.runtime.dom import (
    Document,
    Element,
    TextNode,
    build_nodes,
    document_from_html,
    document_from_render_tree,
    parse_fragment,
)
from residentml_ui.runtime.hydration import (
    HydrationContext,
    HydrationResult,
    HydrationSession,
    IslandFailure,
    IslandMetrics,
    IslandState,
    hydrate_islands,
)
from residentml_ui.runtime.instance import TemplateInstance
from residentml_ui.runtime.scheduling import CancellationToken, IntervalTimer
from residentml_ui.runtime.template_renderer import (
    create_jinja_env,
    get_jinja_env,
    render_island_error,
    render_page,
)

__all__ = [
    # Components
    "Component",
    "ComponentRegistry",
    "MountedRoot",
    "StaticComponent",
    "TemplateIslandComponent",
    "TemplateIslandRoot",
    # DOM
    "Document",
    "Element",
    "TextNode",
    "build_nodes",
    "document_from_html",
    "document_from_render_tree",
    "parse_fragment",
    # Hydration
    "HydrationContext",
    "HydrationResult",
    "HydrationSession",
    "IslandFailure",
    "IslandMetrics",
    "IslandState",
    "hydrate_islands",
    # Instance and timers
    "CancellationToken",
    "IntervalTimer",
    "TemplateInstance",
    # Templates
    "create_jinja_env",
    "get_jinja_env",
    "render_island_error",
    "render_page",
]
