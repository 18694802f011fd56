import asyncio
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Set

import socketio

from shared.logging.logger import get_logger

log = get_logger("pumpfun.transport")

# Reason reported when the close was requested locally; the session never
# schedules a reconnect for it.
CLIENT_DISCONNECT_REASON = "io client disconnect"

TransportHandler = Callable[[str, Any], None]


class ChatTransport(Protocol):
    """
    Non-blocking upstream socket seam.

    Implementations schedule their I/O on the running event loop and report
    everything back through the single handler as (event_name, payload):

    - "connect" (payload None)
    - "disconnect" (payload = reason string)
    - "connect_error" (payload = {"message": str})
    - any server-sent event by its protocol name
    """

    @property
    def connected(self) -> bool: ...

    @property
    def sid(self) -> Optional[str]: ...

    def set_handler(self, handler: Optional[TransportHandler]) -> None: ...

    def open(self) -> None: ...

    def send(self, event: str, data: Any = None) -> bool: ...

    def close(self) -> None: ...


class SocketIOTransport:
    """
    python-socketio AsyncClient wrapper presenting a browser-like header profile.

    Rules:
    - Library reconnection is disabled; the session owns retry policy
    - One transport instance == one connection attempt
    - A failed connect() reports exactly one connect_error
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        transports: Iterable[str] = ("websocket",),
        socketio_path: str = "socket.io",
        wait_timeout: float = 20.0,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.transports = list(transports)
        self.socketio_path = socketio_path
        self.wait_timeout = wait_timeout

        factory = client_factory or socketio.AsyncClient
        self._client = factory(reconnection=False, logger=False, engineio_logger=False)
        self._client.on("connect", self._on_connect)
        self._client.on("disconnect", self._on_disconnect)
        self._client.on("*", self._on_any)

        self._handler: Optional[TransportHandler] = None
        self._closing = False
        self._connect_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #

    @property
    def connected(self) -> bool:
        return bool(getattr(self._client, "connected", False))

    @property
    def sid(self) -> Optional[str]:
        try:
            return self._client.get_sid()
        except Exception:
            return None

    def set_handler(self, handler: Optional[TransportHandler]) -> None:
        self._handler = handler

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def open(self) -> None:
        if self._connect_task and not self._connect_task.done():
            log.debug("Socket.IO connect already in flight — ignoring open()")
            return
        self._closing = False
        self._connect_task = self._spawn(self._run_connect())

    def close(self) -> None:
        self._closing = True
        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
        self._spawn(self._run_disconnect())

    async def _run_connect(self) -> None:
        log.debug(
            f"Opening Socket.IO connection url={self.url} "
            f"transports={self.transports} headers={sorted(self.headers)}"
        )
        try:
            await self._client.connect(
                self.url,
                headers=self.headers,
                transports=self.transports,
                socketio_path=self.socketio_path,
                wait_timeout=self.wait_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closing:
                log.debug(f"Connect failure after local close ignored: {e}")
                return
            self._dispatch("connect_error", {"message": str(e) or type(e).__name__})

    async def _run_disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except Exception as e:
            log.debug(f"Error during Socket.IO disconnect ignored: {e}")

    # ------------------------------------------------------------------ #
    # Messaging
    # ------------------------------------------------------------------ #

    def send(self, event: str, data: Any = None) -> bool:
        if not self.connected:
            return False
        self._spawn(self._run_emit(event, data))
        return True

    async def _run_emit(self, event: str, data: Any) -> None:
        try:
            await self._client.emit(event, data)
        except Exception as e:
            log.warning(f"Socket.IO emit '{event}' failed: {e}")

    # ------------------------------------------------------------------ #
    # Socket.IO callbacks
    # ------------------------------------------------------------------ #

    async def _on_connect(self) -> None:
        self._dispatch("connect", None)

    async def _on_disconnect(self, *args: Any) -> None:
        if self._closing:
            reason = CLIENT_DISCONNECT_REASON
        else:
            reason = str(args[0]) if args else "transport close"
        self._dispatch("disconnect", reason)

    async def _on_any(self, event: str, *args: Any) -> None:
        if not args:
            payload = None
        elif len(args) == 1:
            payload = args[0]
        else:
            payload = list(args)
        self._dispatch(event, payload)

    # ------------------------------------------------------------------ #

    def _dispatch(self, event: str, payload: Any) -> None:
        handler = self._handler
        if handler is None:
            return
        handler(event, payload)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
