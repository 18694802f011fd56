"""Shared test fixtures for the pump.fun chat relay."""

import os
import tempfile

# Loggers open their per-run file at import time; keep those out of the tree.
os.environ.setdefault("PUMPCHAT_LOG_DIR", tempfile.mkdtemp(prefix="pumpchat-logs-"))

import pytest  # noqa: E402

from services.pumpfun.chat.session import PumpChatSession  # noqa: E402
from tests.helpers import ManualTimers, TransportFactory  # noqa: E402


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def transports():
    return TransportFactory()


@pytest.fixture
def make_session(timers, transports):
    def _make(room_id: str = "room-1", **kwargs) -> PumpChatSession:
        kwargs.setdefault("username", "tester")
        kwargs.setdefault("max_reconnect_attempts", 5)
        return PumpChatSession(
            room_id,
            transport_factory=transports,
            timers=timers,
            **kwargs,
        )

    return _make


@pytest.fixture
def recorded():
    """Subscriber that collects every session event."""
    events = []

    def _subscriber(event):
        events.append(event)

    _subscriber.events = events
    return _subscriber
