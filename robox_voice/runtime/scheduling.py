"""Cancellable timers on the orchestrator's event loop."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    """Handle returned by a scheduler; cancelling twice is harmless."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Schedules callbacks after a delay expressed in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)


def cancel_timer(handle: TimerHandle | None) -> None:
    """Cancel a timer handle if one is set."""
    if handle is not None:
        handle.cancel()
