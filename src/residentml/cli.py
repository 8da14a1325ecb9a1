"""
residentml command line.

Commands:
- check: compile a template and report errors and warnings
- compile: print the compiled template (islands, variables) as a table or JSON
- render: server-render a template to HTML
- hydrate: render, then hydrate the islands and report the outcome
- version: print version information
"""

from __future__ import annotations

import asyncio
import json
import logging
import platform
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from residentml._version import get_version
from residentml.core.errors import HydrationError
from residentml.core.ir.template import CompiledTemplate
from residentml.core.logging import setup_logging
from residentml.core.manifest import ProjectManifest, find_manifest
from residentml.core.markup.compiler import compile_template
from residentml.core.render.html import to_html
from residentml.core.state.storage import open_storage

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Compile, render and hydrate residentml profile templates",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_json: Path | None = typer.Option(  # noqa: B008
        None, "--log-json", help="Also write JSONL logs to this file"
    ),
) -> None:
    setup_logging(logging.DEBUG if verbose else logging.WARNING, log_json)


def _load(template: Path) -> tuple[ProjectManifest, CompiledTemplate]:
    """Compile a template file with the limits of the nearest residentml.toml."""
    if not template.exists():
        err_console.print(f"[red]Template not found: {template}[/red]")
        raise typer.Exit(code=1)

    manifest = find_manifest(template)
    result = compile_template(
        template.read_text(encoding="utf-8"),
        limits=manifest.compiler,
        max_expression_nodes=manifest.evaluator.max_nodes,
    )
    for warning in result.warnings:
        err_console.print(f"[yellow]warning:[/yellow] {escape(str(warning))}")
    if not result.success or result.template is None:
        for error in result.errors:
            err_console.print(f"[red]error:[/red] {escape(str(error))}")
        raise typer.Exit(code=1)
    return manifest, result.template


def _load_data(data: Path | None) -> dict[str, Any]:
    if data is None:
        return {}
    try:
        loaded = json.loads(data.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        err_console.print(f"[red]Cannot read resident data {data}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    if not isinstance(loaded, dict):
        err_console.print("[red]Resident data must be a JSON object[/red]")
        raise typer.Exit(code=1)
    return loaded


def _parse_params(params: list[str]) -> dict[str, str]:
    parsed = {}
    for param in params:
        name, sep, value = param.partition("=")
        if not sep:
            err_console.print(
                f"[red]--param expects name=value, got {escape(repr(param))}[/red]"
            )
            raise typer.Exit(code=1)
        parsed[name] = value
    return parsed


@app.command()
def check(
    template: Path = typer.Argument(..., help="Template file"),  # noqa: B008
) -> None:
    """Compile a template and report problems; exits 1 on errors."""
    _, compiled = _load(template)
    stats = compiled.stats
    console.print(
        f"[green]OK[/green] {template}: {stats.node_count} nodes, "
        f"{len(compiled.islands)} islands, {len(compiled.variables)} variables"
    )


@app.command(name="compile")
def compile_command(
    template: Path = typer.Argument(..., help="Template file"),  # noqa: B008
    as_json: bool = typer.Option(False, "--json", help="Print the compiled template as JSON"),
) -> None:
    """Show the islands and variables of a compiled template."""
    _, compiled = _load(template)
    if as_json:
        typer.echo(compiled.model_dump_json(indent=2))
        return

    islands = Table(title="Islands")
    islands.add_column("Id", style="cyan")
    islands.add_column("Component")
    islands.add_column("Kind")
    islands.add_column("Bindings", justify="right")
    for island in compiled.islands:
        islands.add_row(island.id, island.component, str(island.kind), str(len(island.bindings)))
    console.print(islands)

    variables = Table(title="Variables")
    variables.add_column("Name", style="cyan")
    variables.add_column("Type")
    variables.add_column("Initial")
    variables.add_column("Persist")
    for spec in compiled.variables:
        initial = spec.expression if spec.expression else json.dumps(spec.initial)
        variables.add_row(spec.name, str(spec.type), initial, "yes" if spec.persist else "")
    console.print(variables)


@app.command()
def render(
    template: Path = typer.Argument(..., help="Template file"),  # noqa: B008
    data: Path | None = typer.Option(  # noqa: B008
        None, "--data", "-d", help="Resident data (JSON object)"
    ),
    param: list[str] = typer.Option(  # noqa: B008
        [], "--param", "-p", help="URL parameter name=value (repeatable)"
    ),
    page: bool = typer.Option(False, "--page", help="Wrap the output in the page shell"),
    output: Path | None = typer.Option(  # noqa: B008
        None, "--output", "-o", help="Output file (default: stdout)"
    ),
) -> None:
    """Server-render a template to HTML."""
    from residentml_ui.runtime.instance import TemplateInstance
    from residentml_ui.runtime.template_renderer import render_page

    manifest, compiled = _load(template)
    instance = TemplateInstance.from_compiled(
        compiled,
        resident_data=_load_data(data),
        url_params=_parse_params(param),
        storage=open_storage(manifest.persistence),
        scope=template.stem,
        max_persist_bytes=manifest.persistence.max_value_bytes,
    )
    html = str(to_html(instance.render(compiled)))
    if page:
        html = render_page(compiled, html, title=manifest.name)

    if output is None:
        typer.echo(html)
    else:
        output.write_text(html, encoding="utf-8")
        console.print(f"[green]Wrote {output}[/green]")


@app.command()
def hydrate(
    template: Path = typer.Argument(..., help="Template file"),  # noqa: B008
    data: Path | None = typer.Option(  # noqa: B008
        None, "--data", "-d", help="Resident data (JSON object)"
    ),
    container: str = typer.Option("profile", "--container", help="Container element id"),
) -> None:
    """Render a template, hydrate its islands and report the outcome."""
    from residentml_ui.runtime.components import ComponentRegistry, StaticComponent
    from residentml_ui.runtime.dom import document_from_render_tree
    from residentml_ui.runtime.hydration import HydrationContext, HydrationSession
    from residentml_ui.runtime.instance import TemplateInstance

    manifest, compiled = _load(template)
    resident_data = _load_data(data)
    instance = TemplateInstance.from_compiled(
        compiled,
        resident_data=resident_data,
        storage=open_storage(manifest.persistence),
        scope=template.stem,
        max_persist_bytes=manifest.persistence.max_value_bytes,
    )
    document = document_from_render_tree(instance.render(compiled), container)

    components = ComponentRegistry()
    for island in compiled.islands:
        if island.component not in components:
            components.register(island.component, StaticComponent())

    async def _run() -> dict[str, Any]:
        session = HydrationSession(
            document, components, manifest.hydration, manifest.persistence
        )
        context = HydrationContext.for_template(
            container, compiled, resident_data=resident_data, instance=instance
        )
        result = await session.hydrate(context)
        summary = session.describe()
        summary["duration_ms"] = round(result.duration_ms, 2)
        session.cleanup()
        return summary

    try:
        summary = asyncio.run(_run())
    except HydrationError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"Hydrated [green]{summary['hydrated']}[/green], "
        f"failed [red]{summary['failed']}[/red] in {summary['duration_ms']}ms"
    )
    for failure in summary["errors"]:
        console.print(f"  [red]{failure['island_id']}[/red] {escape(failure['message'])}")
    if summary["failed"]:
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version and environment information."""
    console.print(f"[bold]residentml[/bold] {get_version()}")
    console.print(f"Python {platform.python_version()} ({platform.python_implementation()})")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
