"""
Jinja2 templates for the hydration runtime.

Renders the page shell that carries a server-rendered profile template and
the fallback markup shown inside an island that failed to hydrate.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PrefixLoader, select_autoescape
from markupsafe import Markup

from residentml.core.ir.template import CompiledTemplate
from residentml.core.render.renderer import format_value

# Template directory
TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


def _show_var_filter(value: Any, fmt: str | None = None, decimals: int | None = None) -> str:
    """Same display rules as <ShowVar format=...>."""
    return format_value(value, fmt, None if decimals is None else str(decimals))


def _island_config_filter(compiled: CompiledTemplate) -> Markup:
    """Island configs as JSON safe to embed in a <script> element."""
    configs = {
        island.id: {"component": island.component, "kind": str(island.kind), "props": island.props}
        for island in compiled.islands
    }
    payload = json.dumps(configs, sort_keys=True, separators=(",", ":"))
    return Markup(payload.replace("<", "\\u003c").replace(">", "\\u003e"))


def create_jinja_env(project_templates_dir: Path | None = None) -> Environment:
    """Create and configure the Jinja2 environment.

    Args:
        project_templates_dir: Optional directory whose templates override
            the built-in ones. Built-ins stay reachable via the ``rml://``
            prefix (``{% extends "rml://page.html" %}``).
    """
    framework_loader = FileSystemLoader(str(TEMPLATES_DIR))

    if project_templates_dir and project_templates_dir.is_dir():
        main_loader = ChoiceLoader([FileSystemLoader(str(project_templates_dir)), framework_loader])
    else:
        main_loader = ChoiceLoader([framework_loader])

    loader = ChoiceLoader([PrefixLoader({"rml": framework_loader}, delimiter="://"), main_loader])

    env = Environment(
        loader=loader,
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )

    from residentml import __version__ as _rml_version

    env.globals["_residentml_version"] = _rml_version

    env.filters["show_var"] = _show_var_filter
    env.filters["island_config"] = _island_config_filter
    return env


# Module-level singleton
_env: Environment | None = None


def get_jinja_env() -> Environment:
    """Get the shared Jinja2 environment (lazy singleton)."""
    global _env
    if _env is None:
        _env = create_jinja_env()
    return _env


def configure_project_templates(project_templates_dir: Path) -> None:
    """Use project-level template overrides from now on."""
    global _env
    _env = create_jinja_env(project_templates_dir)


def render_fragment(template_name: str, **kwargs: Any) -> str:
    """Render a template relative to templates/."""
    return get_jinja_env().get_template(template_name).render(**kwargs)


def render_island_error(
    island_id: str,
    component_type: str,
    message: str,
    *,
    show_details: bool,
) -> str:
    """Fallback markup for an island whose mount failed."""
    return render_fragment(
        "island_error.html",
        island_id=island_id,
        component_type=component_type,
        message=message,
        show_details=show_details,
    )


def render_page(
    compiled: CompiledTemplate,
    body: Markup | str,
    *,
    container_id: str = "profile",
    title: str = "Profile",
) -> str:
    """
    Render the page shell around a server-rendered template.

    Args:
        compiled: The compiled template (its island configs are embedded)
        body: Output of ``to_html`` for the rendered template
        container_id: Id of the element hydration looks for
        title: Document title
    """
    return render_fragment(
        "page.html",
        compiled=compiled,
        body=Markup(body) if not isinstance(body, Markup) else body,
        container_id=container_id,
        title=title,
    )
