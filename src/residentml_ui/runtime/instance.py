"""
Template instance: the live state behind one rendered template.

An instance owns the variable store, the action executor and the renderer
shared by every island of the template. Event firings go through a FIFO
dispatch queue: a firing requested while another one is running (from a
subscriber, an interval tick or a sequence step) waits until the current
one has finished and its notifications have flushed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from residentml.core.errors import ActionError
from residentml.core.expression_lang.scope import EvalScope
from residentml.core.ir.actions import ActionStep, EventBinding, EventKind, SequenceActions
from residentml.core.ir.template import CompiledTemplate, Island
from residentml.core.ir.variables import VariableSpec
from residentml.core.markup.tags import TagRegistry
from residentml.core.render.nodes import RenderNode
from residentml.core.render.renderer import ControlFlowRenderer
from residentml.core.state.executor import ActionExecutor, Toast
from residentml.core.state.storage import KeyValueStorage
from residentml.core.state.store import MAX_PERSIST_BYTES, VariableStore
from residentml_ui.runtime.scheduling import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class _Firing:
    steps: list[ActionStep]
    scope: EvalScope
    token: CancellationToken | None
    label: str


class TemplateInstance:
    """
    Store, executor and renderer for one template on one page.

    Args:
        variables: Declared variables of the template
        islands: Islands whose bindings the renderer can attach
        initializers: Steps run once, before the first render
        resident_data: Host data (owner, viewer, posts, ...)
        storage: Backend for ``persist=true`` variables
        scope: Storage namespace, usually the template id
        url_params: Query parameters for ``urlParam`` variables
        registry: Tag registry for the renderer
        on_toast: Receives ShowToast effects
    """

    def __init__(
        self,
        variables: Iterable[VariableSpec] = (),
        *,
        islands: Iterable[Island] = (),
        initializers: Iterable[ActionStep] = (),
        resident_data: Mapping[str, Any] | None = None,
        storage: KeyValueStorage | None = None,
        scope: str = "default",
        url_params: Mapping[str, str] | None = None,
        registry: TagRegistry | None = None,
        on_toast: Callable[[Toast], None] | None = None,
        max_persist_bytes: int = MAX_PERSIST_BYTES,
    ) -> None:
        self.resident_data = dict(resident_data or {})
        self.store = VariableStore(
            variables,
            storage=storage,
            scope=scope,
            url_params=url_params,
            resident=self.resident_data,
            max_persist_bytes=max_persist_bytes,
        )
        self.executor = ActionExecutor(
            self.store,
            self.resident_data,
            on_toast=self._toast,
            schedule_sequence=self.start_sequence,
        )
        self.renderer = ControlFlowRenderer(self.store, self.resident_data, registry, islands)
        self.token = CancellationToken()
        self.toasts: list[Toast] = []
        self.errors: list[ActionError] = []
        self._on_toast = on_toast
        self._queue: deque[_Firing] = deque()
        self._dispatching = False
        self._active_token: CancellationToken | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        initializers = list(initializers)
        if initializers:
            self._enqueue(_Firing(initializers, self.executor.scope(), None, "initializers"))

    @classmethod
    def from_compiled(cls, compiled: CompiledTemplate, **kwargs: Any) -> TemplateInstance:
        return cls(
            compiled.variables,
            islands=compiled.islands,
            initializers=compiled.initializers,
            **kwargs,
        )

    @property
    def closed(self) -> bool:
        return self.token.cancelled

    def render(self, compiled: CompiledTemplate) -> RenderNode:
        return self.renderer.render_document(compiled)

    # -- Dispatch --

    def dispatch(
        self,
        binding: EventBinding,
        local_values: Mapping[str, Any] | None = None,
        token: CancellationToken | None = None,
    ) -> ActionError | None:
        """Fire a binding. Returns the failure when it ran synchronously."""
        scope = self.executor.scope(local_values)
        return self._enqueue(_Firing(list(binding.actions), scope, token, binding.id))

    def trigger(
        self,
        node: RenderNode,
        event: EventKind | str,
        value: Any = None,
        token: CancellationToken | None = None,
    ) -> list[ActionError]:
        """Fire every handler ``node`` has for ``event``; ``value`` becomes a local."""
        errors = []
        for handler in node.handlers.get(EventKind(event), []):
            local_values = dict(handler.locals)
            if value is not None:
                local_values["value"] = value
            error = self.dispatch(handler.binding, local_values, token)
            if error is not None:
                errors.append(error)
        return errors

    def _enqueue(self, firing: _Firing) -> ActionError | None:
        if self.closed or (firing.token is not None and firing.token.cancelled):
            logger.debug("Dropped %s: owner already cancelled", firing.label)
            return None
        self._queue.append(firing)
        if self._dispatching:
            return None

        self._dispatching = True
        first_error: ActionError | None = None
        try:
            while self._queue:
                current = self._queue.popleft()
                if current.token is not None and current.token.cancelled:
                    continue
                self._active_token = current.token
                error = self.executor.run(current.steps, current.scope)
                if error is not None:
                    self.errors.append(error)
                    if current is firing:
                        first_error = error
        finally:
            self._active_token = None
            self._dispatching = False
        return first_error

    def _toast(self, toast: Toast) -> None:
        self.toasts.append(toast)
        if self._on_toast is not None:
            self._on_toast(toast)

    # -- Sequences --

    def start_sequence(self, sequence: SequenceActions, scope: EvalScope) -> None:
        """Run Sequence steps on the event loop, owned by the firing's token."""
        # Island tokens are children of self.token, so one parent link suffices
        token = self._active_token.child() if self._active_token else self.token.child()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; Sequence steps run without delays")
            for step in sequence.steps:
                self._enqueue(_Firing(list(step.actions), scope, token, "sequence"))
            token.release()
            return

        task = loop.create_task(self._run_sequence(sequence, scope, token))
        self._tasks.add(task)
        token.on_cancel(task.cancel)

        def _finished(done: asyncio.Task[None]) -> None:
            self._tasks.discard(done)
            token.release()

        task.add_done_callback(_finished)

    async def _run_sequence(
        self, sequence: SequenceActions, scope: EvalScope, token: CancellationToken
    ) -> None:
        for step in sequence.steps:
            if step.delay_ms > 0:
                await asyncio.sleep(step.delay_ms / 1000)
            if token.cancelled:
                return
            self._enqueue(_Firing(list(step.actions), scope, token, "sequence"))

    async def settle(self) -> None:
        """Wait until every running sequence has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel sequences and drop queued firings."""
        self.token.cancel()
        self._queue.clear()
