"""Tests for the process-wide connection registry."""

from core.registry import ConnectionRegistry
from services.pumpfun.chat.session import SessionState


class TestConnectionRegistry:
    def test_make_key_format(self):
        assert ConnectionRegistry.make_key("room", "alice", now_ms=42) == "room-alice-42"

    def test_start_registers_session(self, make_session):
        registry = ConnectionRegistry()
        key, session = registry.start("room-1", "alice", lambda: make_session("room-1"))

        assert key.startswith("room-1-alice-")
        assert key in registry
        assert registry.get(key) is session
        assert len(registry) == 1

    def test_start_replaces_existing_room_session(self, make_session, transports):
        registry = ConnectionRegistry()
        _, first = registry.start("room-1", "alice", lambda: make_session("room-1"))
        first.connect()

        key, second = registry.start("room-1", "bob", lambda: make_session("room-1"))

        assert first.state is SessionState.STOPPED
        assert transports.transports[0].closed == 1
        assert registry.keys() == [key]
        assert registry.find_by_room("room-1") == [second]

    def test_other_rooms_untouched(self, make_session):
        registry = ConnectionRegistry()
        _, a = registry.start("room-a", "alice", lambda: make_session("room-a"))
        registry.start("room-b", "bob", lambda: make_session("room-b"))

        assert a.state is SessionState.IDLE
        assert len(registry) == 2

    def test_remove(self, make_session):
        registry = ConnectionRegistry()
        key, session = registry.start("room-1", "alice", lambda: make_session("room-1"))

        assert registry.remove(key) is session
        assert registry.remove(key) is None
        assert len(registry) == 0

    def test_find_active_requires_live_socket(self, make_session, transports, timers):
        registry = ConnectionRegistry()
        _, session = registry.start("room-1", "alice", lambda: make_session("room-1"))
        assert registry.find_active("room-1") is None

        session.connect()
        transports.last.fire("connect")
        assert registry.find_active("room-1") is session
        assert registry.find_active("room-2") is None

    def test_close_all_disconnects_everything(self, make_session):
        registry = ConnectionRegistry()
        _, a = registry.start("room-a", "alice", lambda: make_session("room-a"))
        _, b = registry.start("room-b", "bob", lambda: make_session("room-b"))

        assert registry.close_all() == 2
        assert a.state is SessionState.STOPPED
        assert b.state is SessionState.STOPPED
        assert len(registry) == 0

    def test_eviction_hook_reasons(self, make_session):
        registry = ConnectionRegistry()
        evicted = []
        registry.start("room-1", "alice", lambda: make_session("room-1"), on_evicted=evicted.append)
        registry.start("room-1", "bob", lambda: make_session("room-1"), on_evicted=evicted.append)
        assert evicted == ["replaced"]

        registry.close_all()
        assert evicted == ["replaced", "shutdown"]

    def test_remove_does_not_call_eviction_hook(self, make_session):
        registry = ConnectionRegistry()
        evicted = []
        key, _ = registry.start("room-1", "alice", lambda: make_session("room-1"), on_evicted=evicted.append)

        registry.remove(key)
        registry.close_all()
        assert evicted == []

    def test_failing_eviction_hook_does_not_block_replacement(self, make_session):
        registry = ConnectionRegistry()

        def _boom(reason):
            raise RuntimeError("hook failed")

        _, first = registry.start("room-1", "alice", lambda: make_session("room-1"), on_evicted=_boom)
        key, _ = registry.start("room-1", "bob", lambda: make_session("room-1"))

        assert first.state is SessionState.STOPPED
        assert registry.keys() == [key]

    def test_snapshot_shape(self, make_session):
        registry = ConnectionRegistry()
        key, _ = registry.start("room-1", "alice", lambda: make_session("room-1"))

        snap = registry.snapshot()
        assert list(snap) == [key]
        assert snap[key]["roomId"] == "room-1"
        assert snap[key]["viewer"] == "alice"
        assert snap[key]["connection"]["state"] == "idle"
