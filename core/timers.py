"""
Timer scheduling seam for time-based session suspensions.

Every delay a session uses (settle delay, fallback probes, reconnect
backoff, connect watchdog) is armed through a Timers object so the state
machine can be driven by a virtual clock in tests.

Delays are expressed in milliseconds at this boundary.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Timers(Protocol):
    def call_later(self, delay_ms: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class LoopTimers:
    """
    asyncio-backed Timers.

    When no loop is given, the running loop at arm time is used; arming
    from outside a running loop is a programming error.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay_ms) / 1000.0, callback, *args)
