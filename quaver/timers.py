from __future__ import annotations

import asyncio
from typing import Callable


class DelayedTask:
    """A one-shot timer that can be cancelled before it fires.

    ``fired`` and ``cancelled`` let callers tell a stale timer apart from the
    one currently armed on a session.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[DelayedTask], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self.deadline = self._loop.time() + delay
        self.fired = False
        self.cancelled = False
        self._callback = callback
        self._handle: asyncio.TimerHandle = self._loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        self.fired = True
        self._callback(self)

    @property
    def active(self) -> bool:
        return not (self.fired or self.cancelled)

    def cancel(self) -> None:
        if self.active:
            self.cancelled = True
            self._handle.cancel()
