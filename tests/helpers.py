"""Fakes shared by the session, registry and bridge tests."""

from typing import Any, Callable, List, Optional, Tuple


class ManualTimer:
    def __init__(self, due: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.due = due
        self.callback = callback
        self.args = args
        self._cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualTimers:
    """Virtual clock: timers only fire when advance() moves time past them."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[ManualTimer] = []

    def call_later(self, delay_ms: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.now + max(0.0, delay_ms), callback, args)
        self._timers.append(timer)
        return timer

    def pending(self) -> List[ManualTimer]:
        return [t for t in self._timers if not t.cancelled() and not t.fired]

    def delays(self) -> List[float]:
        return sorted(t.due - self.now for t in self.pending())

    def advance(self, ms: float) -> None:
        target = self.now + ms
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            timer.fired = True
            timer.callback(*timer.args)
        self.now = target


class FakeTransport:
    """Records what the session asks of it; tests drive inbound events via fire()."""

    def __init__(self, sid: str = "sid-1"):
        self.handler: Optional[Callable[[str, Any], None]] = None
        self.opened = 0
        self.closed = 0
        self.sent: List[Tuple[str, Any]] = []
        self.connected = False
        self.sid = sid

    def set_handler(self, handler):
        self.handler = handler

    def open(self) -> None:
        self.opened += 1

    def send(self, event: str, data: Any = None) -> bool:
        if not self.connected:
            return False
        self.sent.append((event, data))
        return True

    def close(self) -> None:
        self.closed += 1
        self.connected = False

    def fire(self, event: str, payload: Any = None) -> None:
        if event == "connect":
            self.connected = True
        elif event == "disconnect":
            self.connected = False
        if self.handler is not None:
            self.handler(event, payload)

    def events_sent(self) -> List[str]:
        return [name for name, _ in self.sent]


class TransportFactory:
    """Hands out a fresh FakeTransport per connection attempt."""

    def __init__(self):
        self.transports: List[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(sid=f"sid-{len(self.transports) + 1}")
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    @property
    def opens(self) -> int:
        return len(self.transports)
