"""
Island hydration.

Finds island placeholders inside a container, mounts a component into each
and tracks the mounted roots so they can be unmounted later.

Each island hydrates independently: a failing mount is recorded, replaced by
fallback markup and never affects its siblings. Only a missing container
fails the whole pass.

Placeholder lifecycle attributes:

    data-hydrating="true"      mount in progress
    data-hydrated="true"       mounted
    data-hydration-time="<ms>" epoch milliseconds of the mount
    data-hydration-error="true" mount failed, fallback shown
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from residentml.core.environment import should_show_error_details
from residentml.core.errors import ErrorKind, HydrationError
from residentml.core.ir.template import CompiledTemplate, Island, IslandKind
from residentml.core.manifest import HydrationConfig, PersistenceConfig
from residentml.core.state.storage import KeyValueStorage, open_storage
from residentml_ui.runtime.components import (
    Component,
    ComponentRegistry,
    MountedRoot,
    TemplateIslandComponent,
)
from residentml_ui.runtime.dom import Document, Element
from residentml_ui.runtime.instance import TemplateInstance
from residentml_ui.runtime.template_renderer import render_island_error

logger = logging.getLogger(__name__)

HYDRATING = "data-hydrating"
HYDRATED = "data-hydrated"
HYDRATION_TIME = "data-hydration-time"
HYDRATION_ERROR = "data-hydration-error"


class IslandState(StrEnum):
    """Where an island is in its lifecycle."""

    UNMOUNTED = "unmounted"
    HYDRATING = "hydrating"
    HYDRATED = "hydrated"
    FAILED = "failed"


@dataclass
class HydrationContext:
    """
    Input of one hydration pass.

    Attributes:
        container_id: Id of the element holding the placeholders
        resident_data: Host data (owner, viewer, posts, ...)
        islands: Island configs by which placeholders are resolved
        template: Compiled template, used to build the shared instance
        instance: Shared template instance; built from ``template`` when absent
        url_params: Query parameters for ``urlParam`` variables
        storage: Backend for ``persist=true`` variables; the session default when absent
        scope: Storage namespace; defaults to ``container_id``
    """

    container_id: str
    resident_data: dict[str, Any] = field(default_factory=dict)
    islands: list[Island] = field(default_factory=list)
    template: CompiledTemplate | None = None
    instance: TemplateInstance | None = None
    url_params: dict[str, str] = field(default_factory=dict)
    storage: KeyValueStorage | None = None
    scope: str | None = None

    @classmethod
    def for_template(
        cls, container_id: str, compiled: CompiledTemplate, **kwargs: Any
    ) -> HydrationContext:
        return cls(container_id, islands=list(compiled.islands), template=compiled, **kwargs)


@dataclass
class IslandFailure:
    """One island that failed to mount."""

    island_id: str
    component_type: str
    error: Exception
    element: Element

    def to_dict(self) -> dict[str, str]:
        kind = getattr(self.error, "kind", None)
        return {
            "island_id": self.island_id,
            "component_type": self.component_type,
            "kind": str(kind) if kind else type(self.error).__name__,
            "message": getattr(self.error, "message", str(self.error)),
        }


@dataclass
class HydrationResult:
    hydrated_count: int = 0
    failed_count: int = 0
    errors: list[IslandFailure] = field(default_factory=list)
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration_ms(self) -> float:
        return (self.end_time - self.start_time) * 1000


@dataclass
class IslandMetrics:
    island_id: str
    component_type: str
    hydration_ms: float


class HydrationSession:
    """
    Hydrates the islands of a document and owns their mounted roots.

    Example:
        session = HydrationSession(document, components)
        result = await session.hydrate(HydrationContext.for_template("profile", compiled))
        ...
        session.cleanup()
    """

    def __init__(
        self,
        document: Document,
        components: ComponentRegistry | None = None,
        config: HydrationConfig | None = None,
        persistence: PersistenceConfig | None = None,
    ) -> None:
        self.document = document
        self.components = components or ComponentRegistry()
        self.config = config or HydrationConfig()
        self.persistence = persistence or PersistenceConfig()
        self._storage: KeyValueStorage | None = None
        self.template_component = TemplateIslandComponent()
        self.roots: dict[str, MountedRoot] = {}
        self.states: dict[str, IslandState] = {}
        self.failures: list[IslandFailure] = []
        self.instances: dict[str, TemplateInstance] = {}
        self._metrics: list[IslandMetrics] = []

    @property
    def show_error_details(self) -> bool:
        return should_show_error_details(self.config.show_error_details)

    @property
    def storage(self) -> KeyValueStorage:
        """Storage named by the persistence config, opened on first use."""
        if self._storage is None:
            self._storage = open_storage(self.persistence)
        return self._storage

    # -- Hydration --

    async def hydrate(self, context: HydrationContext) -> HydrationResult:
        """Mount every placeholder under the container.

        Raises:
            HydrationError: ContainerNotFound when the container is missing.
        """
        result = HydrationResult(start_time=time.perf_counter())
        container = self.document.get_element_by_id(context.container_id)
        if container is None:
            raise HydrationError(
                f"Container element not found: {context.container_id}",
                ErrorKind.CONTAINER_NOT_FOUND,
            )

        placeholders = container.query_attribute("data-island")
        configs = {island.id: island for island in context.islands}
        context = self._with_instance(context, configs.values())

        logger.debug(
            "Hydrating %d island placeholders in #%s", len(placeholders), context.container_id
        )
        outcomes = await asyncio.gather(
            *(self._hydrate_placeholder(element, configs, context) for element in placeholders)
        )

        for outcome in outcomes:
            if outcome is IslandState.HYDRATED:
                result.hydrated_count += 1
            elif isinstance(outcome, IslandFailure):
                result.failed_count += 1
                result.errors.append(outcome)

        result.end_time = time.perf_counter()
        logger.info(
            "Hydration of #%s: %d hydrated, %d failed in %.1fms",
            context.container_id,
            result.hydrated_count,
            result.failed_count,
            result.duration_ms,
            extra={"context": {"container": context.container_id}},
        )
        return result

    def _with_instance(
        self, context: HydrationContext, islands: Iterable[Island]
    ) -> HydrationContext:
        if context.instance is not None:
            self.instances[context.container_id] = context.instance
            return context
        if not any(island.kind == IslandKind.TEMPLATE for island in islands):
            return context

        instance = self.instances.get(context.container_id)
        if instance is None or instance.closed:
            storage = context.storage if context.storage is not None else self.storage
            options: dict[str, Any] = {
                "resident_data": context.resident_data,
                "url_params": context.url_params,
                "storage": storage,
                "scope": context.scope or context.container_id,
                "max_persist_bytes": self.persistence.max_value_bytes,
            }
            if context.template is not None:
                instance = TemplateInstance.from_compiled(context.template, **options)
            else:
                instance = TemplateInstance(islands=context.islands, **options)
            self.instances[context.container_id] = instance
        return replace(context, instance=instance)

    async def _hydrate_placeholder(
        self,
        element: Element,
        configs: Mapping[str, Island],
        context: HydrationContext,
    ) -> IslandState | IslandFailure | None:
        island_id = element.get_attribute("data-island")
        component_type = element.get_attribute("data-component")
        if not island_id or not component_type:
            logger.warning("Island placeholder missing required attributes: %r", element)
            return None

        island = configs.get(island_id)
        if island is None:
            logger.warning("Island configuration not found for %s", island_id)
            return None

        try:
            return await self._hydrate_island(element, island, context)
        except Exception as e:
            failure = IslandFailure(island_id, component_type, e, element)
            self.states[island_id] = IslandState.FAILED
            self.failures.append(failure)
            logger.error(
                "Failed to hydrate island %s (%s): %s",
                island_id,
                component_type,
                e,
                extra={"context": failure.to_dict()},
            )
            self._show_island_error(element, failure)
            return failure

    async def _hydrate_island(
        self, element: Element, island: Island, context: HydrationContext
    ) -> IslandState | None:
        if element.has_attribute(HYDRATED) or element.has_attribute(HYDRATING):
            logger.debug("Island %s already hydrated or hydrating; skipped", island.id)
            return None

        started = time.perf_counter()
        element.set_attribute(HYDRATING, "true")
        self.states[island.id] = IslandState.HYDRATING
        try:
            if not element.is_connected:
                logger.warning("Island %s element left the document before mounting", island.id)
                self.states[island.id] = IslandState.UNMOUNTED
                return None

            component = self._resolve(island)
            element.clear_children()
            root = await self._mount(component, element, island, context)
            self._store_root(island.id, root)

            element.set_attribute(HYDRATED, "true")
            element.set_attribute(HYDRATION_TIME, str(int(time.time() * 1000)))
        finally:
            element.remove_attribute(HYDRATING)

        self.states[island.id] = IslandState.HYDRATED
        self._metrics.append(
            IslandMetrics(island.id, island.component, (time.perf_counter() - started) * 1000)
        )
        return IslandState.HYDRATED

    def _resolve(self, island: Island) -> Component:
        if island.kind == IslandKind.TEMPLATE:
            return self.template_component
        component = self.components.resolve(island.component)
        if component is None:
            raise HydrationError(
                f"Unknown component type: {island.component}", ErrorKind.COMPONENT_NOT_FOUND
            )
        return component

    async def _mount(
        self, component: Component, element: Element, island: Island, context: HydrationContext
    ) -> MountedRoot:
        try:
            root = component.mount(element, island, context)
            if inspect.isawaitable(root):
                root = await root
        except HydrationError:
            raise
        except Exception as e:
            raise HydrationError(
                f"{island.component} threw while mounting: {e}", ErrorKind.MOUNT_THREW
            ) from e
        return root

    def _store_root(self, island_id: str, root: MountedRoot) -> None:
        existing = self.roots.get(island_id)
        if existing is not None:
            try:
                existing.unmount()
            except Exception:
                logger.warning("Failed to unmount existing root for %s", island_id, exc_info=True)
        self.roots[island_id] = root

    def _show_island_error(self, element: Element, failure: IslandFailure) -> None:
        if not element.has_attribute(HYDRATED):
            element.set_inner_html(
                render_island_error(
                    failure.island_id,
                    failure.component_type,
                    getattr(failure.error, "message", str(failure.error)),
                    show_details=self.show_error_details,
                )
            )
        element.set_attribute(HYDRATION_ERROR, "true")

    # -- Teardown --

    def cleanup(self) -> int:
        """Unmount every root; returns how many were unmounted. Idempotent."""
        count = 0
        for island_id, root in list(self.roots.items()):
            count += 1
            try:
                root.unmount()
            except Exception:
                logger.error("Error unmounting island %s", island_id, exc_info=True)
            self.states[island_id] = IslandState.UNMOUNTED
        self.roots.clear()
        for instance in self.instances.values():
            instance.close()
        self.instances.clear()
        return count

    def cleanup_in_container(self, container_id: str) -> int:
        """Unmount the hydrated islands under one container only."""
        container = self.document.get_element_by_id(container_id)
        if container is None:
            logger.warning("Container %s not found; nothing to clean up", container_id)
            return 0

        count = 0
        for element in container.query_attribute(HYDRATED, "true"):
            island_id = element.get_attribute("data-island")
            if island_id and island_id in self.roots:
                root = self.roots.pop(island_id)
                count += 1
                try:
                    root.unmount()
                except Exception:
                    logger.error("Error unmounting island %s", island_id, exc_info=True)
                self.states[island_id] = IslandState.UNMOUNTED
            element.remove_attribute(HYDRATED)
            element.remove_attribute(HYDRATING)
            element.remove_attribute(HYDRATION_TIME)

        instance = self.instances.pop(container_id, None)
        if instance is not None:
            instance.close()
        return count

    # -- Introspection --

    def metrics(self) -> list[IslandMetrics]:
        return list(self._metrics)

    def describe(self) -> dict[str, Any]:
        """Counts and failures for debugging a page."""
        hydrated = self.document.query_attribute(HYDRATED, "true")
        failed = self.document.query_attribute(HYDRATION_ERROR, "true")
        return {
            "hydrated": len(hydrated),
            "failed": len(failed),
            "roots": sorted(self.roots),
            "states": {island_id: str(state) for island_id, state in self.states.items()},
            "errors": [failure.to_dict() for failure in self.failures],
        }


async def hydrate_islands(
    document: Document,
    context: HydrationContext,
    components: ComponentRegistry | None = None,
    config: HydrationConfig | None = None,
    persistence: PersistenceConfig | None = None,
) -> tuple[HydrationSession, HydrationResult]:
    """Create a session and run one hydration pass."""
    session = HydrationSession(document, components, config, persistence)
    result = await session.hydrate(context)
    return session, result
