"""
Debounced auto-sync: a pending flag plus one timer handle.

Every `trigger()` resets the timer, so a burst of mutations produces a single
callback after `delay_s` of quiet. `trigger()` may be called from any thread;
the timer itself lives on the attached event loop.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, Optional, Set

from csg.core.observability import emit


class DebouncedScheduler:
    def __init__(self, delay_s: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self._callback = callback
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending = False
        self._guard = threading.Lock()
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._pending

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._guard:
            self._loop = loop
            pending = self._pending
        if pending:
            self.trigger()

    def trigger(self) -> None:
        with self._guard:
            self._pending = True
            loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._reset()
        else:
            loop.call_soon_threadsafe(self._reset)

    def _reset(self) -> None:
        loop = self._loop
        if loop is None:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay_s, self._fire)

    def _fire(self) -> None:
        self._handle = None
        with self._guard:
            self._pending = False
        self.fired += 1
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            emit("error", "sync.auto.failed", str(e), None, __name__, type=type(e).__name__)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        with self._guard:
            self._pending = False

    async def close(self) -> None:
        self.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._loop = None
