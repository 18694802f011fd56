import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from services.pumpfun.chat.session import PumpChatSession
from shared.logging.logger import get_logger

log = get_logger("core.registry")

SessionFactory = Callable[[], PumpChatSession]
EvictionHook = Callable[[str], None]

# Reasons passed to an entry's on_evicted hook.
EVICTED_REPLACED = "replaced"
EVICTED_SHUTDOWN = "shutdown"


@dataclass
class RegistryEntry:
    key: str
    room_id: str
    viewer: str
    session: PumpChatSession
    created_at: float = field(default_factory=time.time)
    on_evicted: Optional[EvictionHook] = None


class ConnectionRegistry:
    """
    Process-wide table of live upstream sessions.

    Invariant: at most one entry per room. start() tears down every prior
    entry for the room (disconnect + remove) before the replacement session
    is created, so a room never holds two upstream sockets.

    An entry may carry an on_evicted hook. The registry calls it with the
    reason after it tore the session down itself (replacement or close_all),
    so the session's owner learns it no longer has one. remove() does not
    call the hook.

    Mutations are guarded by a lock because the relay HTTP server looks
    sessions up from its worker threads. Session methods themselves are only
    ever invoked on the event loop thread.
    """

    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(room_id: str, viewer: str, now_ms: Optional[int] = None) -> str:
        stamp = now_ms if now_ms is not None else int(time.time() * 1000)
        return f"{room_id}-{viewer}-{stamp}"

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def start(
        self,
        room_id: str,
        viewer: str,
        factory: SessionFactory,
        on_evicted: Optional[EvictionHook] = None,
    ) -> Tuple[str, PumpChatSession]:
        stale = self._pop_room(room_id)
        for entry in stale:
            log.info(f"[{room_id}] Replacing existing session {entry.key}")
            self._evict(entry, EVICTED_REPLACED)

        session = factory()
        key = self.make_key(room_id, viewer)
        self.add(key, room_id, viewer, session, on_evicted=on_evicted)
        return key, session

    def add(
        self,
        key: str,
        room_id: str,
        viewer: str,
        session: PumpChatSession,
        on_evicted: Optional[EvictionHook] = None,
    ) -> RegistryEntry:
        entry = RegistryEntry(
            key=key, room_id=room_id, viewer=viewer, session=session, on_evicted=on_evicted
        )
        with self._lock:
            self._entries[key] = entry
        log.debug(f"[{room_id}] Registered session {key} (total={len(self)})")
        return entry

    def remove(self, key: str) -> Optional[PumpChatSession]:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        log.debug(f"[{entry.room_id}] Removed session {key}")
        return entry.session

    def close_all(self) -> int:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            self._evict(entry, EVICTED_SHUTDOWN)
        if entries:
            log.info(f"Closed {len(entries)} upstream session(s)")
        return len(entries)

    def _pop_room(self, room_id: str) -> List[RegistryEntry]:
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.room_id == room_id]
            return [self._entries.pop(k) for k in keys]

    @staticmethod
    def _evict(entry: RegistryEntry, reason: str) -> None:
        try:
            entry.session.disconnect()
        except Exception as e:
            log.warning(f"[{entry.room_id}] Error disconnecting session {entry.key}: {e}")

        if entry.on_evicted is None:
            return
        try:
            entry.on_evicted(reason)
        except Exception as e:
            log.warning(f"[{entry.room_id}] Eviction hook failed for {entry.key}: {e}")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[PumpChatSession]:
        with self._lock:
            entry = self._entries.get(key)
        return entry.session if entry else None

    def find_by_room(self, room_id: str) -> List[PumpChatSession]:
        with self._lock:
            return [e.session for e in self._entries.values() if e.room_id == room_id]

    def find_active(self, room_id: str) -> Optional[PumpChatSession]:
        for session in self.find_by_room(room_id):
            if session.is_active():
                return session
        return None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            entries = list(self._entries.values())
        return {
            e.key: {
                "roomId": e.room_id,
                "viewer": e.viewer,
                "createdAt": int(e.created_at * 1000),
                "connection": e.session.get_connection_info(),
            }
            for e in entries
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
