"""Cancellable one-shot timers used to debounce analysis passes."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """A scheduled callback that can be cancelled until it fires.

    Once the delay has elapsed the callback is considered fired; cancelling
    after that point is a no-op and the running callback completes.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], label: str = "timer"):
        self.delay = delay
        self.label = label
        self._callback = callback
        self._fired = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"{label}-timer")

    async def _run(self):
        await asyncio.sleep(self.delay)
        self._fired.set()
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"{self.label} callback failed: {e}", exc_info=True)

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Cancel a pending timer. Returns False if it already fired."""
        if self.fired or self._task.done():
            return False
        self._task.cancel()
        return True

    def abort(self) -> None:
        """Cancel regardless of state, interrupting a running callback."""
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class Debouncer:
    """Collapses bursts of triggers into one run after a quiet period.

    Every ``trigger()`` resets the quiet period. Runs are serialised by a lock,
    so a pass that already started is never overlapped by the next one.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]], label: str = "debounce"):
        self.delay = delay
        self.label = label
        self._action = action
        self._lock = asyncio.Lock()
        self._pending: Optional[TimerHandle] = None
        self._running: set[TimerHandle] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.fired

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def trigger(self) -> None:
        if self._pending is not None:
            if not self._pending.cancel():
                # Already fired: let it finish, track it until done
                self._running.add(self._pending)
        handle = TimerHandle(self.delay, self._locked_action, label=self.label)
        self._pending = handle

    async def _locked_action(self):
        async with self._lock:
            await self._action()

    def cancel_pending(self) -> None:
        if self._pending is not None:
            if not self._pending.cancel():
                self._running.add(self._pending)
            self._pending = None

    def _fired_handles(self) -> list[TimerHandle]:
        handles = [h for h in self._running if not h.done]
        self._running = set(handles)
        return handles

    async def drain(self) -> None:
        """Cancel the pending timer and wait for any run already in flight."""
        self.cancel_pending()
        for handle in self._fired_handles():
            await handle.wait()
        self._running.clear()

    def abort(self) -> None:
        """Cancel the pending timer and interrupt any run in flight."""
        self.cancel_pending()
        for handle in self._fired_handles():
            handle.abort()
        self._running.clear()

    async def run_now(self, action: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        """Run immediately, still serialised with debounced runs.

        ``action`` overrides the debounced action for this one run.
        """
        async with self._lock:
            await (action or self._action)()
