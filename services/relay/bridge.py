from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.registry import EVICTED_REPLACED, ConnectionRegistry
from core.timers import LoopTimers, TimerHandle, Timers
from services.plays.recorder import PlayRecorder
from services.pumpfun.chat.events import SessionEvent, SessionEventKind
from services.pumpfun.chat.session import PumpChatSession
from services.pumpfun.models.message import PumpChatMessage
from services.relay.channel import ViewerChannel
from shared.logging.logger import get_logger

log = get_logger("relay.bridge")

CLEANUP_DELAY_MS = 1000
NO_ACTIVE_CONNECTION = "No active connection found"

BridgeSessionFactory = Callable[[str, str], PumpChatSession]


def _clock() -> str:
    return datetime.now().strftime("%H:%M:%S")


class RelayBridge:
    """
    Forwards one session's normalized events to one viewer channel.

    Every session event becomes two frames:
    - `log`:   {"message": human readable line, "timestamp"}
    - `event`: {"eventName", "args": [...], "timestamp"}

    The bridge owns its session: when the viewer leaves (abort) the session
    is stopped and deregistered; after maxReconnectsReached it deregisters
    and closes the channel once the final frames had time to flush. When the
    registry evicts the session (a newer viewer took the room, or shutdown)
    the viewer gets a final frame and its channel is closed.

    Must be driven from the event loop thread.
    """

    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        session_factory: BridgeSessionFactory,
        channel: ViewerChannel,
        room_id: str,
        username: str,
        recorder: Optional[PlayRecorder] = None,
        timers: Optional[Timers] = None,
        cleanup_delay_ms: int = CLEANUP_DELAY_MS,
    ):
        self.registry = registry
        self.channel = channel
        self.room_id = room_id
        self.username = username
        self.recorder = recorder

        self._session_factory = session_factory
        self._timers: Timers = timers or LoopTimers()
        self._cleanup_delay_ms = cleanup_delay_ms
        self._cleanup_timer: Optional[TimerHandle] = None

        self.key: Optional[str] = None
        self.session: Optional[PumpChatSession] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> str:
        self._log("🚀 Starting server-side pump.fun chat debug...")
        self._log(f"🏠 Room ID: {self.room_id}")
        self._log(f"👤 Username: {self.username}")

        self.key, self.session = self.registry.start(
            self.room_id,
            self.username,
            lambda: self._session_factory(self.room_id, self.username),
            on_evicted=self._on_evicted,
        )
        self.session.subscribe(self._on_session_event)

        log.info(f"[{self.room_id}] Relay bridge started ({self.key})")
        self._log("🔄 Attempting server-side WebSocket connection...")
        self.session.connect()
        return self.key

    def abort(self) -> None:
        """Viewer went away. Idempotent."""
        if self._closed:
            return
        self._closed = True

        log.info(f"[{self.room_id}] Viewer left, tearing down {self.key}")
        self._cancel_cleanup()

        if self.session is not None:
            self.session.unsubscribe(self._on_session_event)
            self.session.disconnect()
        if self.key is not None:
            self.registry.remove(self.key)
        self.channel.close()

    def _finish_after_exhaustion(self) -> None:
        self._cleanup_timer = None
        if self._closed:
            return
        self._closed = True

        if self.session is not None:
            self.session.unsubscribe(self._on_session_event)
        if self.key is not None:
            self.registry.remove(self.key)
        self.channel.close()
        log.info(f"[{self.room_id}] Relay bridge closed after reconnect exhaustion ({self.key})")

    def _on_evicted(self, reason: str) -> None:
        # The registry already stopped and removed the session.
        if self._closed:
            return
        self._closed = True
        self._cancel_cleanup()

        if self.session is not None:
            self.session.unsubscribe(self._on_session_event)
        if reason == EVICTED_REPLACED:
            self._log("🔁 Session replaced by a newer viewer of this room")
        else:
            self._log("🛑 Relay shutting down")
        self._event("disconnected", [{"reason": reason}])
        self.channel.close()
        log.info(f"[{self.room_id}] Relay bridge evicted ({reason}, {self.key})")

    def _cancel_cleanup(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    # ------------------------------------------------------------------ #
    # Frames
    # ------------------------------------------------------------------ #

    def _log(self, message: str) -> None:
        self.channel.push("log", {"message": message, "timestamp": _clock()})

    def _event(self, name: str, args: List[Any]) -> None:
        self.channel.push("event", {"eventName": name, "args": args, "timestamp": _clock()})

    def _on_session_event(self, event: SessionEvent) -> None:
        if self._closed:
            return

        handler = self._FRAME_BUILDERS.get(event.kind)
        if handler is not None:
            handler(self, event.payload)

    def _on_connected(self, info: Dict[str, Any]) -> None:
        sid = (info or {}).get("socketId")
        self._log(f"✅ Server-side Socket.IO Connected! Socket ID: {sid}")
        self._event("connected", [info])

    def _on_disconnected(self, payload: Dict[str, Any]) -> None:
        reason = (payload or {}).get("reason", "")
        self._log(f"🔌 Server-side Socket.IO Disconnected ({reason})")
        self._event("disconnected", [payload])

    def _on_error(self, payload: Dict[str, Any]) -> None:
        self._log(f"❌ Server-side Connection error: {(payload or {}).get('message')}")
        self._event("error", [payload])

    def _on_message(self, message: PumpChatMessage) -> None:
        self._log(f"📩 New message from {message.username}: {message.message}")
        self._event("newMessage", [message.to_dict()])
        if self.recorder is not None:
            self.recorder.handle_message(message)

    def _on_history(self, messages: List[PumpChatMessage]) -> None:
        self._log(f"📜 Received message history: {len(messages)} messages")
        self._event("messageHistory", [{"messages": [m.to_dict() for m in messages]}])

    def _on_user_joined(self, payload: Dict[str, Any]) -> None:
        self._log(f"👋 User joined: {payload.get('username')}")
        self._event("userJoined", [payload])

    def _on_user_left(self, payload: Dict[str, Any]) -> None:
        self._log(f"👋 User left: {payload.get('address')}")
        self._event("userLeft", [payload])

    def _on_server_error(self, payload: Dict[str, Any]) -> None:
        self._log(f"🚨 Server Error: {payload.get('reason')}")
        self._event("serverError", [payload])

    def _on_max_reconnects(self, payload: Dict[str, Any]) -> None:
        self._log("❌ Max reconnection attempts reached. Connection failed.")
        self._event("maxReconnectsReached", [payload])
        if self._cleanup_timer is None:
            self._cleanup_timer = self._timers.call_later(
                self._cleanup_delay_ms, self._finish_after_exhaustion
            )

    _FRAME_BUILDERS = {
        SessionEventKind.CONNECTED: _on_connected,
        SessionEventKind.DISCONNECTED: _on_disconnected,
        SessionEventKind.ERROR: _on_error,
        SessionEventKind.MESSAGE: _on_message,
        SessionEventKind.MESSAGE_HISTORY: _on_history,
        SessionEventKind.USER_JOINED: _on_user_joined,
        SessionEventKind.USER_LEFT: _on_user_left,
        SessionEventKind.SERVER_ERROR: _on_server_error,
        SessionEventKind.MAX_RECONNECTS_REACHED: _on_max_reconnects,
    }


def send_chat_message(registry: ConnectionRegistry, room_id: str, text: str) -> Tuple[bool, Optional[str]]:
    """
    Route a viewer's outbound chat message to the room's live session.

    Must run on the event loop thread.
    """
    session = registry.find_active(room_id)
    if session is None:
        return False, NO_ACTIVE_CONNECTION

    if not session.send_message(text):
        return False, NO_ACTIVE_CONNECTION

    log.info(f"[{room_id}] Relayed chat message ({len(text)} chars)")
    return True, None
