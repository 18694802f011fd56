import json
import random
import string
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from core.timers import LoopTimers, TimerHandle, Timers
from services.pumpfun.chat.events import SessionEvent, SessionEventKind, SessionSubscriber
from services.pumpfun.chat.transport import (
    CLIENT_DISCONNECT_REASON,
    ChatTransport,
    SocketIOTransport,
)
from services.pumpfun.errors import (
    ConnectTimeoutError,
    ProtocolError,
    ReconnectExhaustedError,
    SessionStoppedError,
    TransportError,
)
from services.pumpfun.models.message import PumpChatMessage
from shared.chat.history import MessageHistoryBuffer
from shared.config.relay import RelayConfig
from shared.logging.logger import get_logger

log = get_logger("pumpfun.session")

SETTLE_DELAY_MS = 500
FALLBACK_DELAY_MS = 1000
CONNECT_TIMEOUT_MS = 20000
RECONNECT_BASE_MS = 1000
RECONNECT_CAP_MS = 16000

DEFAULT_HISTORY_LIMIT = 100
DEFAULT_MAX_RECONNECTS = 5


def reconnect_delay(attempt: int, base_ms: int = RECONNECT_BASE_MS, cap_ms: int = RECONNECT_CAP_MS) -> int:
    """Exponential backoff: 1s, 2s, 4s, 8s, 16s, 16s, ..."""
    if attempt < 1:
        attempt = 1
    return min(base_ms * (2 ** (attempt - 1)), cap_ms)


def random_username(prefix: str = "TestUser") -> str:
    alphabet = string.ascii_lowercase + string.digits
    return prefix + "".join(random.choice(alphabet) for _ in range(5))


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    JOINING_ROOM = "joining_room"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    STOPPED = "stopped"


_LIVE_STATES = {
    SessionState.CONNECTING,
    SessionState.CONNECTED,
    SessionState.JOINING_ROOM,
    SessionState.ACTIVE,
}


class PumpChatSession:
    """
    Resilient upstream session for one pump.fun chat room.

    Lifecycle:
        Idle -> Connecting -> Connected -> JoiningRoom -> Active
        any  -> Disconnected -> ReconnectScheduled -> Connecting
        any  -> Stopped (explicit disconnect(), terminal)

    All methods are synchronous and must run on the event loop thread; I/O
    is delegated to the transport and every delay goes through `timers`.
    Protocol failures are reported as SessionEvents, never raised.
    """

    def __init__(
        self,
        room_id: str,
        *,
        transport_factory: Callable[[], ChatTransport],
        username: Optional[str] = None,
        message_history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECTS,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        timers: Optional[Timers] = None,
        logging_enabled: bool = True,
    ):
        if not room_id or not str(room_id).strip():
            raise ValueError("room_id is required")
        if max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")

        self.room_id = str(room_id).strip()
        self.username = username or random_username()
        self.max_reconnect_attempts = int(max_reconnect_attempts)
        self.connect_timeout_ms = int(connect_timeout_ms)
        self.logging_enabled = logging_enabled

        self._transport_factory = transport_factory
        self._timers: Timers = timers or LoopTimers()
        self._history: MessageHistoryBuffer[PumpChatMessage] = MessageHistoryBuffer(message_history_limit)
        self._subscribers: List[SessionSubscriber] = []

        self._state = SessionState.IDLE
        self._transport: Optional[ChatTransport] = None
        # Bumped on every open; callbacks from older attempts are dropped.
        self._attempt = 0

        self._connected = False
        self._reconnect_attempts = 0
        self._reconnecting = False
        self._should_reconnect = True
        self._exhausted = False

        self._reconnect_timer: Optional[TimerHandle] = None
        self._watchdog_timer: Optional[TimerHandle] = None

    # ------------------------------------------------------------------ #
    # Subscription
    # ------------------------------------------------------------------ #

    def subscribe(self, subscriber: SessionSubscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: SessionSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def _emit(self, kind: SessionEventKind, payload: Any = None) -> None:
        event = SessionEvent(kind=kind, payload=payload)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                log.error(f"[{self.room_id}] Subscriber failed on '{kind.value}': {e}")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SessionState:
        return self._state

    def connect(self) -> None:
        """
        Start (or restart) the upstream connection.

        No-op while a connection is in flight or established. From
        Disconnected or ReconnectScheduled this is a manual restart: the
        attempt counter is reset and any pending backoff is cancelled.
        """
        if self._state is SessionState.STOPPED:
            raise SessionStoppedError(f"session for room {self.room_id} was stopped")

        if self._state in _LIVE_STATES:
            log.debug(f"[{self.room_id}] connect() ignored — state={self._state.value}")
            return

        self._cancel_reconnect_timer()
        self._reconnect_attempts = 0
        self._reconnecting = False
        self._exhausted = False
        self._should_reconnect = True
        self._open_transport()

    def disconnect(self) -> None:
        """Stop for good. Safe to call repeatedly and from any state."""
        if self._state is SessionState.STOPPED:
            return

        log.info(f"[{self.room_id}] Disconnecting from pump.fun chat")

        self._should_reconnect = False
        self._cancel_reconnect_timer()
        self._cancel_watchdog()
        self._release_transport()

        self._connected = False
        self._reconnecting = False
        self._set_state(SessionState.STOPPED)

    def _open_transport(self) -> None:
        self._release_transport()

        self._attempt += 1
        attempt = self._attempt
        self._set_state(SessionState.CONNECTING)

        log.info(
            f"[{self.room_id}] Attempting to connect to pump.fun chat "
            f"(attempt {self._reconnect_attempts + 1}/{self.max_reconnect_attempts + 1})"
        )

        try:
            transport = self._transport_factory()
            transport.set_handler(partial(self._on_transport_event, attempt))
            self._transport = transport
            self._watchdog_timer = self._timers.call_later(
                self.connect_timeout_ms, self._on_connect_timeout, attempt
            )
            transport.open()
        except Exception as e:
            log.error(f"[{self.room_id}] Failed to create upstream connection: {e}")
            self._emit(SessionEventKind.ERROR, TransportError(str(e)).describe())
            self._fail_attempt()

    def _release_transport(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is None:
            return

        transport.set_handler(None)
        try:
            transport.close()
        except Exception as e:
            log.debug(f"[{self.room_id}] Error during transport close ignored: {e}")

    def _fail_attempt(self) -> None:
        """Common tail of every connectivity failure."""
        self._cancel_watchdog()
        self._release_transport()
        self._connected = False
        self._reconnecting = False
        self._set_state(SessionState.DISCONNECTED)

        if self._should_reconnect:
            self._schedule_reconnect()

    # ------------------------------------------------------------------ #
    # Reconnect policy
    # ------------------------------------------------------------------ #

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect or self._exhausted or self._reconnect_timer is not None:
            return

        if self._reconnect_attempts >= self.max_reconnect_attempts:
            self._exhausted = True
            error = ReconnectExhaustedError(
                f"Max reconnection attempts reached ({self.max_reconnect_attempts})"
            )
            log.error(f"[{self.room_id}] {error} — giving up")
            self._emit(
                SessionEventKind.MAX_RECONNECTS_REACHED,
                {"attempts": self._reconnect_attempts},
            )
            return

        self._reconnect_attempts += 1
        delay = reconnect_delay(self._reconnect_attempts)
        self._reconnecting = True
        self._set_state(SessionState.RECONNECT_SCHEDULED)

        log.info(
            f"[{self.room_id}] Scheduling reconnection in {delay}ms "
            f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
        )
        self._reconnect_timer = self._timers.call_later(delay, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if not self._should_reconnect or self._state is not SessionState.RECONNECT_SCHEDULED:
            return
        self._open_transport()

    def _on_connect_timeout(self, attempt: int) -> None:
        self._watchdog_timer = None
        if attempt != self._attempt or self._connected or self._state is not SessionState.CONNECTING:
            return

        error = ConnectTimeoutError(f"Connection timeout after {self.connect_timeout_ms}ms")
        log.warning(f"[{self.room_id}] {error}")
        self._emit(SessionEventKind.ERROR, error.describe())
        self._fail_attempt()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _cancel_watchdog(self) -> None:
        if self._watchdog_timer is not None:
            self._watchdog_timer.cancel()
            self._watchdog_timer = None

    # ------------------------------------------------------------------ #
    # Transport events
    # ------------------------------------------------------------------ #

    def _on_transport_event(self, attempt: int, event: str, payload: Any) -> None:
        if attempt != self._attempt or self._state is SessionState.STOPPED:
            return

        if self.logging_enabled:
            try:
                rendered = json.dumps(payload, default=str)
            except (TypeError, ValueError):
                rendered = repr(payload)
            log.debug(f"[{self.room_id}] Received event '{event}': {rendered[:1000]}")

        handler = self._EVENT_HANDLERS.get(event)
        if handler is None:
            return
        handler(self, attempt, payload)

    def _handle_connect(self, attempt: int, payload: Any) -> None:
        self._cancel_watchdog()
        self._connected = True
        self._reconnect_attempts = 0
        self._reconnecting = False
        self._exhausted = False
        self._set_state(SessionState.CONNECTED)

        log.info(f"[{self.room_id}] Socket.IO connected (sid={self._transport_sid()})")
        self._emit(SessionEventKind.CONNECTED, self.get_connection_info())

        # Join only after the transport reports itself stable.
        self._timers.call_later(SETTLE_DELAY_MS, self._join_room, attempt)

    def _handle_disconnect(self, attempt: int, payload: Any) -> None:
        reason = str(payload) if payload is not None else "unknown"
        log.warning(f"[{self.room_id}] Socket.IO disconnected: {reason}")

        self._connected = False
        self._emit(SessionEventKind.DISCONNECTED, {"reason": reason})

        if reason == CLIENT_DISCONNECT_REASON or not self._should_reconnect:
            self._cancel_watchdog()
            self._release_transport()
            self._reconnecting = False
            self._set_state(SessionState.DISCONNECTED)
            return

        self._fail_attempt()

    def _handle_connect_error(self, attempt: int, payload: Any) -> None:
        if isinstance(payload, dict):
            message = str(payload.get("message") or payload)
        else:
            message = str(payload) if payload is not None else "connect_error"

        error = TransportError(message, status_code=502 if "502" in message else None)
        log.error(f"[{self.room_id}] Socket.IO connection error: {message}")
        if error.status_code == 502:
            log.error(f"[{self.room_id}] HTTP 502 Bad Gateway — pump.fun may be down or blocking connections")

        self._emit(SessionEventKind.ERROR, error.describe())
        self._fail_attempt()

    def _handle_error(self, attempt: int, payload: Any) -> None:
        error = TransportError(str(payload) if payload is not None else "socket error")
        log.error(f"[{self.room_id}] Socket.IO error: {error}")
        self._emit(SessionEventKind.ERROR, error.describe())

    def _handle_new_message(self, attempt: int, payload: Any) -> None:
        try:
            message = PumpChatMessage.from_payload(payload)
        except ValueError as e:
            log.warning(f"[{self.room_id}] Dropping malformed newMessage: {e}")
            return

        self._history.append(message)
        self._emit(SessionEventKind.MESSAGE, message)

    def _handle_message_history(self, attempt: int, payload: Any) -> None:
        raw_messages = payload.get("messages") if isinstance(payload, dict) else payload
        if not isinstance(raw_messages, list):
            raw_messages = []

        messages: List[PumpChatMessage] = []
        for raw in raw_messages:
            try:
                messages.append(PumpChatMessage.from_payload(raw))
            except ValueError:
                continue

        kept = self._history.replace(messages)
        log.info(f"[{self.room_id}] Received message history: {len(messages)} messages (kept {len(kept)})")
        self._emit(SessionEventKind.MESSAGE_HISTORY, kept)

    def _handle_user_joined(self, attempt: int, payload: Any) -> None:
        data = payload if isinstance(payload, dict) else {}
        self._emit(
            SessionEventKind.USER_JOINED,
            {
                "username": str(data.get("username") or ""),
                "address": str(data.get("userAddress") or ""),
            },
        )

    def _handle_user_left(self, attempt: int, payload: Any) -> None:
        if isinstance(payload, dict):
            address = payload.get("userAddress") or ""
        else:
            address = payload or ""
        self._emit(SessionEventKind.USER_LEFT, {"address": str(address)})

    def _handle_join_response(self, attempt: int, payload: Any) -> None:
        data = payload if isinstance(payload, dict) else {}
        if data.get("success") is True:
            log.info(f"[{self.room_id}] Joined room")
            self._request_history(attempt)
            return

        error = ProtocolError(str(data.get("message") or "Failed to join room"))
        log.error(f"[{self.room_id}] Failed to join room: {error}")
        self._emit(SessionEventKind.SERVER_ERROR, {"reason": str(error)})

    def _handle_server_error(self, attempt: int, payload: Any) -> None:
        if isinstance(payload, dict):
            reason = str(payload.get("message") or payload)
        else:
            reason = str(payload) if payload is not None else "Unknown server error"
        log.error(f"[{self.room_id}] Server error: {reason}")
        self._emit(SessionEventKind.SERVER_ERROR, {"reason": reason})

    _EVENT_HANDLERS: Dict[str, Callable[["PumpChatSession", int, Any], None]] = {
        "connect": _handle_connect,
        "disconnect": _handle_disconnect,
        "connect_error": _handle_connect_error,
        "error": _handle_error,
        "newMessage": _handle_new_message,
        "messageHistory": _handle_message_history,
        "userJoined": _handle_user_joined,
        "userLeft": _handle_user_left,
        "joinRoomResponse": _handle_join_response,
        "serverError": _handle_server_error,
    }

    # ------------------------------------------------------------------ #
    # Room handshake
    # ------------------------------------------------------------------ #

    def _probe_ready(self, attempt: int) -> bool:
        return attempt == self._attempt and self._connected and self._transport is not None

    def _join_room(self, attempt: int) -> None:
        if not self._probe_ready(attempt):
            return

        self._set_state(SessionState.JOINING_ROOM)
        log.info(f"[{self.room_id}] Joining room as {self.username}")
        self._transport.send("joinRoom", {"roomId": self.room_id, "username": self.username})
        self._set_state(SessionState.ACTIVE)

        # The accepted join shape is not contractual; probe the alternates too.
        self._timers.call_later(FALLBACK_DELAY_MS, self._join_room_fallback, attempt)

    def _join_room_fallback(self, attempt: int) -> None:
        if not self._probe_ready(attempt):
            return
        log.debug(f"[{self.room_id}] Trying alternative room join patterns")
        self._transport.send("join", self.room_id)
        self._transport.send("subscribe", {"room": self.room_id})

    def _request_history(self, attempt: int) -> None:
        if not self._probe_ready(attempt):
            return

        limit = self._history.capacity
        log.info(f"[{self.room_id}] Requesting message history (limit={limit})")
        self._transport.send(
            "getMessageHistory",
            {"roomId": self.room_id, "before": None, "limit": limit},
        )
        self._timers.call_later(FALLBACK_DELAY_MS, self._request_history_fallback, attempt)

    def _request_history_fallback(self, attempt: int) -> None:
        if not self._probe_ready(attempt):
            return
        limit = self._history.capacity
        log.debug(f"[{self.room_id}] Trying alternative message history patterns")
        self._transport.send("messageHistory", {"roomId": self.room_id})
        self._transport.send("getHistory", {"room": self.room_id, "limit": limit})
        self._transport.send("fetchMessages", {"roomId": self.room_id})

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def send_message(self, text: str) -> bool:
        """
        Post a chat message to the room.

        Returns False (and sends nothing) unless the session is connected;
        callers that care about delivery should check is_active() first.
        """
        if not self._connected or self._transport is None:
            log.debug(f"[{self.room_id}] send_message ignored — session not connected")
            return False
        return bool(self._transport.send("sendMessage", {"roomId": self.room_id, "message": text}))

    def get_messages(self, limit: Optional[int] = None) -> List[PumpChatMessage]:
        return self._history.snapshot(limit)

    def get_latest_message(self) -> Optional[PumpChatMessage]:
        return self._history.latest()

    def is_active(self) -> bool:
        return self._connected and self._transport is not None and bool(self._transport.connected)

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "isConnected": self._connected,
            "socketConnected": bool(self._transport.connected) if self._transport else False,
            "roomId": self.room_id,
            "username": self.username,
            "messageCount": len(self._history),
            "socketId": self._transport_sid(),
            "reconnectAttempts": self._reconnect_attempts,
            "isReconnecting": self._reconnecting,
            "shouldReconnect": self._should_reconnect,
        }

    # ------------------------------------------------------------------ #

    def _transport_sid(self) -> Optional[str]:
        return self._transport.sid if self._transport else None

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        log.debug(f"[{self.room_id}] State {self._state.value} -> {state.value}")
        self._state = state


def create_session(
    config: RelayConfig,
    room_id: str,
    username: Optional[str] = None,
    *,
    timers: Optional[Timers] = None,
) -> PumpChatSession:
    """Build a session wired to a real Socket.IO transport from config."""
    upstream = config.upstream

    def _transport_factory() -> ChatTransport:
        return SocketIOTransport(
            upstream.url,
            headers=upstream.headers,
            transports=upstream.transports,
            socketio_path=upstream.socketio_path,
            wait_timeout=upstream.connect_timeout_ms / 1000.0,
        )

    return PumpChatSession(
        room_id,
        transport_factory=_transport_factory,
        username=username or config.session.username,
        message_history_limit=config.session.message_history_limit,
        max_reconnect_attempts=config.session.max_reconnect_attempts,
        connect_timeout_ms=upstream.connect_timeout_ms,
        timers=timers,
        logging_enabled=config.session.logging_enabled,
    )
