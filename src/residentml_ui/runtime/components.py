"""
Island components.

A component mounts into a placeholder element and returns a root that can
later be unmounted. Resident components (PostFeed, MusicPlayer, ...) are
registered by the host; template islands use ``TemplateIslandComponent``,
which renders the island subtree from the shared template instance and
re-renders on store changes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

from residentml.core.ir.actions import EventBinding, EventKind
from residentml.core.ir.template import Island
from residentml.core.render.nodes import RenderNode
from residentml_ui.runtime.dom import Element, build_nodes
from residentml_ui.runtime.instance import TemplateInstance
from residentml_ui.runtime.scheduling import IntervalTimer

if TYPE_CHECKING:
    from residentml_ui.runtime.hydration import HydrationContext

logger = logging.getLogger(__name__)


class MountedRoot(Protocol):
    """Handle returned by ``Component.mount``."""

    def unmount(self) -> None: ...


class Component(Protocol):
    """Anything that can mount into an island placeholder.

    ``mount`` may return the root directly or an awaitable of it.
    """

    def mount(
        self, element: Element, island: Island, context: HydrationContext
    ) -> MountedRoot | Awaitable[MountedRoot]: ...


class ComponentRegistry:
    """Resident components by tag name."""

    def __init__(self, components: dict[str, Component] | None = None) -> None:
        self._components: dict[str, Component] = dict(components or {})

    def register(self, name: str, component: Component) -> None:
        if name in self._components:
            logger.debug("Component %s re-registered", name)
        self._components[name] = component

    def resolve(self, name: str) -> Component | None:
        return self._components.get(name)

    def names(self) -> list[str]:
        return sorted(self._components)

    def __contains__(self, name: str) -> bool:
        return name in self._components

    def __len__(self) -> int:
        return len(self._components)


class StaticComponent:
    """A component that renders fixed markup; handy for hosts and tests."""

    def __init__(self, render: Callable[[Island], str] | str = "") -> None:
        self._render = render

    def mount(self, element: Element, island: Island, context: HydrationContext) -> _StaticRoot:
        markup = self._render(island) if callable(self._render) else self._render
        element.set_inner_html(markup)
        return _StaticRoot(element)


class _StaticRoot:
    def __init__(self, element: Element) -> None:
        self.element = element
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False
        self.element.clear_children()


class TemplateIslandRoot:
    """
    A mounted template island.

    Owns a cancellation token: unmounting cancels it, which stops interval
    timers, pending sequence steps and queued firings of this island.
    """

    def __init__(self, element: Element, island: Island, instance: TemplateInstance) -> None:
        self.element = element
        self.island = island
        self.instance = instance
        self.token = instance.token.child()
        self.timers: list[IntervalTimer] = []
        self.render_count = 0
        self.tree: RenderNode | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def mounted(self) -> bool:
        return not self.token.cancelled

    def render(self) -> None:
        if not self.mounted:
            return
        self.tree = self.instance.renderer.render_island(self.island)
        self.element.replace_children(build_nodes(self.tree, self._wire))
        self.render_count += 1

    def _wire(self, node: RenderNode, element: Element) -> None:
        for event_kind in node.handlers:
            if event_kind in (EventKind.MOUNT, EventKind.INTERVAL):
                continue
            element.add_event_listener(str(event_kind), self._listener(node, event_kind))

    def _listener(self, node: RenderNode, event_kind: EventKind) -> Callable[[object], None]:
        def listener(value: object = None) -> None:
            self.instance.trigger(node, event_kind, value, self.token)

        return listener

    def start(self) -> None:
        """Subscribe to the store, fire mount bindings, start interval timers."""
        self._unsubscribe = self.instance.store.subscribe_all(self._on_change)
        if self.tree is None:
            return
        for node in self.tree.walk():
            for handler in node.handlers.get(EventKind.MOUNT, []):
                self.instance.dispatch(handler.binding, handler.locals, self.token)
            for handler in node.handlers.get(EventKind.INTERVAL, []):
                interval_ms = handler.binding.interval_ms or 0
                if interval_ms <= 0:
                    logger.warning("Interval binding %s has no period", handler.binding.id)
                    continue
                timer = IntervalTimer(
                    interval_ms,
                    self._interval_callback(handler.binding, handler.locals),
                    self.token,
                )
                timer.start()
                self.timers.append(timer)

    def _interval_callback(
        self, binding: EventBinding, local_values: dict[str, object]
    ) -> Callable[[], None]:
        def tick() -> None:
            self.instance.dispatch(binding, local_values, self.token)

        return tick

    def _on_change(self, changed: frozenset[str]) -> None:
        self.render()

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.token.cancel()
        self.token.release()
        for timer in self.timers:
            timer.stop()
        self.timers.clear()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.element.clear_children()


class TemplateIslandComponent:
    """Mounts DSL subtrees; shares the context's template instance across islands."""

    def mount(
        self, element: Element, island: Island, context: HydrationContext
    ) -> TemplateIslandRoot:
        instance = context.instance
        if instance is None:
            instance = TemplateInstance(islands=[island], resident_data=context.resident_data)
        instance.renderer.add_islands([island])
        root = TemplateIslandRoot(element, island, instance)
        root.render()
        root.start()
        return root

