"""
Timers for interval bindings and Sequence delays.

Every timer belongs to a ``CancellationToken`` owned by an island root.
Unmounting the island cancels the token; a timer that wakes up after that
does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


def _noop() -> None:
    pass


class CancellationToken:
    """A one-way cancelled flag with callbacks and child tokens."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._detach: Callable[[], None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback raised")

    @property
    def pending_callbacks(self) -> int:
        return len(self._callbacks)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        if self._cancelled:
            callback()
            return _noop
        self._callbacks.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return remove

    def child(self) -> CancellationToken:
        """A token cancelled together with this one (and cancellable on its own)."""
        token = CancellationToken()
        token._detach = self.on_cancel(token.cancel)
        return token

    def release(self) -> None:
        """Stop following the parent token once a short-lived child is done."""
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()


class IntervalTimer:
    """
    Calls ``callback`` every ``interval_ms`` until the token is cancelled.

    Firings never overlap: the callback is synchronous and the next sleep
    starts only after it returns.
    """

    def __init__(
        self,
        interval_ms: int,
        callback: Callable[[], object],
        token: CancellationToken,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = interval_ms
        self.callback = callback
        self.token = token
        self.ticks = 0
        self._task: asyncio.Task[None] | None = None
        self._unregister: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the timer on the running event loop."""
        if self.running or self.token.cancelled:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._unregister = self.token.on_cancel(self.stop)

    def stop(self) -> None:
        unregister, self._unregister = self._unregister, None
        if unregister is not None:
            unregister()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while not self.token.cancelled:
            await asyncio.sleep(self.interval_ms / 1000)
            if self.token.cancelled:
                return
            self.ticks += 1
            try:
                self.callback()
            except Exception:
                logger.exception("Interval callback raised; timer keeps running")
