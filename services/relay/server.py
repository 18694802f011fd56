"""HTTP relay server: viewer event streams, outbound chat and lottery plays."""

from __future__ import annotations

import asyncio
import json
import select
import socket
import threading
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from core.registry import ConnectionRegistry
from runtime import version
from services.plays.recorder import PlayRecorder
from services.pumpfun.chat.session import PumpChatSession, random_username
from services.relay.bridge import RelayBridge, send_chat_message
from services.relay.channel import ViewerChannel
from shared.config.relay import RelayApiConfig
from shared.logging.logger import get_logger
from shared.storage.plays.store import LotteryPlay, LotteryPlayStore

log = get_logger("relay.server")

# How long an HTTP worker waits on the event loop before giving up.
LOOP_CALL_TIMEOUT = 5.0


@dataclass
class RelayContext:
    """Everything a request handler needs; shared by all worker threads."""

    loop: asyncio.AbstractEventLoop
    registry: ConnectionRegistry
    session_factory: Callable[[str, str], PumpChatSession]
    default_room_id: str
    store: Optional[LotteryPlayStore] = None
    recorder: Optional[PlayRecorder] = None
    default_username: Optional[str] = None

    def call_in_loop(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a plain callable on the event loop thread and wait for its result."""

        async def _invoke():
            return fn(*args)

        future = asyncio.run_coroutine_threadsafe(_invoke(), self.loop)
        return future.result(timeout=LOOP_CALL_TIMEOUT)


def _parse_numbers(raw: Any) -> Optional[List[int]]:
    if not isinstance(raw, list) or not raw:
        return None
    try:
        return [int(n) for n in raw]
    except (TypeError, ValueError):
        return None


class RelayServer:
    def __init__(self, config: RelayApiConfig, context: RelayContext) -> None:
        self._config = config
        self._context = context
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if not self._server:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if not self._config.enabled:
            log.info("Relay server disabled via config")
            return
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        host, port = self.address
        log.info(f"Relay server running on {host}:{port}")

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        log.info("Relay server stopped")

    def _build_handler(self):
        config = self._config
        context = self._context

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _send_error_json(self, status: int, error: str) -> None:
                self._send_json(status, {"success": False, "error": error})

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Headers", "Content-Type")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self.send_header("Content-Length", "0")
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                query = parse_qs(parsed.query)
                path = parsed.path.rstrip("/")

                if path == "/api/chat-debug":
                    return self._handle_stream(query)
                if path == "/api/lottery-plays":
                    return self._handle_list_plays(query)
                if path == "/api/status":
                    return self._handle_status()

                self._send_error_json(HTTPStatus.NOT_FOUND, "Unknown endpoint")

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                path = parsed.path.rstrip("/")
                payload = self._read_json_body()
                if payload is None:
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid Content-Length")

                if path == "/api/chat-debug":
                    return self._handle_chat_command(payload)
                if path == "/api/lottery-plays/save":
                    return self._handle_save_play(payload)

                self._send_error_json(HTTPStatus.NOT_FOUND, "Unknown endpoint")

            def _read_json_body(self) -> Optional[Dict[str, Any]]:
                """Parsed JSON object body; {} when absent or not an object, None on a bad length."""
                try:
                    length = int(self.headers.get("Content-Length", 0))
                except ValueError:
                    self.close_connection = True
                    return None
                if length <= 0:
                    return {}
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    return {}
                return payload if isinstance(payload, dict) else {}

            # ----------------------------------------------------------
            # Viewer stream
            # ----------------------------------------------------------

            def _handle_stream(self, query: Dict[str, List[str]]) -> None:
                room_id = (query.get("roomId") or [None])[0] or context.default_room_id
                username = (
                    (query.get("username") or [None])[0]
                    or context.default_username
                    or random_username()
                )

                channel = ViewerChannel()
                bridge = RelayBridge(
                    registry=context.registry,
                    session_factory=context.session_factory,
                    channel=channel,
                    room_id=room_id,
                    username=username,
                    recorder=context.recorder,
                )

                try:
                    context.call_in_loop(bridge.start)
                except Exception as e:
                    log.error(f"[{room_id}] Failed to start relay bridge: {e}")
                    return self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

                self._remember_chat_config(room_id, username)

                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", "text/event-stream")
                self.send_header("Cache-Control", "no-cache")
                self.send_header("Connection", "close")
                self._apply_cors()
                self.end_headers()
                self.close_connection = True

                log.info(f"[{room_id}] Viewer {username} attached ({bridge.key})")
                try:
                    for frame in channel.frames(
                        keepalive_seconds=config.keepalive_seconds,
                        alive=self._viewer_connected,
                        poll_seconds=config.viewer_poll_seconds,
                    ):
                        self.wfile.write(frame.encode("utf-8"))
                        self.wfile.flush()
                except OSError as e:
                    log.info(f"[{room_id}] Viewer {username} stream ended: {e}")
                finally:
                    try:
                        context.loop.call_soon_threadsafe(bridge.abort)
                    except RuntimeError:
                        # Loop already closed during shutdown.
                        log.debug(f"[{room_id}] Event loop closed before bridge abort")

            def _viewer_connected(self) -> bool:
                # A viewer never sends after the request, so a readable
                # socket that peeks empty means it hung up.
                try:
                    readable, _, _ = select.select([self.connection], [], [], 0)
                    if not readable:
                        return True
                    return self.connection.recv(1, socket.MSG_PEEK) != b""
                except (OSError, ValueError):
                    return False

            def _remember_chat_config(self, room_id: str, username: str) -> None:
                if context.store is None:
                    return
                try:
                    context.store.save_chat_config(room_id, username)
                except Exception as e:
                    log.warning(f"[{room_id}] Could not persist chat config: {e}")

            # ----------------------------------------------------------
            # Outbound chat
            # ----------------------------------------------------------

            def _handle_chat_command(self, payload: Dict[str, Any]) -> None:
                action = payload.get("action")
                if action != "sendMessage":
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid action")

                room_id = payload.get("roomId") or context.default_room_id
                message = payload.get("message")
                if not isinstance(message, str) or not message.strip():
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "Message is required")

                try:
                    ok, reason = context.call_in_loop(
                        send_chat_message, context.registry, room_id, message
                    )
                except Exception as e:
                    log.error(f"[{room_id}] Send failed: {e}")
                    return self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

                if not ok:
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, reason or "Send failed")
                self._send_json(HTTPStatus.OK, {"success": True, "message": "Message sent"})

            # ----------------------------------------------------------
            # Lottery plays
            # ----------------------------------------------------------

            def _handle_list_plays(self, query: Dict[str, List[str]]) -> None:
                if context.store is None:
                    return self._send_error_json(HTTPStatus.SERVICE_UNAVAILABLE, "Storage disabled")

                try:
                    limit = int((query.get("limit") or ["10"])[0])
                except ValueError:
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "limit must be an integer")

                raw_page = (query.get("page") or [None])[0]
                try:
                    page = int(raw_page) if raw_page is not None else None
                except ValueError:
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "page must be an integer")
                username = (query.get("username") or [None])[0]

                response: Dict[str, Any] = {"success": True}
                try:
                    if username:
                        plays = context.store.plays_by_user(username)
                    elif page is not None:
                        plays, total, total_pages = context.store.paginated_plays(page=page, limit=limit)
                        response["pagination"] = {
                            "page": max(1, page),
                            "limit": max(1, limit),
                            "total": total,
                            "totalPages": total_pages,
                        }
                    else:
                        plays = context.store.recent_plays(limit=limit)
                except Exception as e:
                    log.error(f"Failed to read lottery plays: {e}")
                    return self._send_error_json(
                        HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to fetch lottery plays"
                    )
                response["data"] = [p.to_dict() for p in plays]
                self._send_json(HTTPStatus.OK, response)

            def _handle_save_play(self, payload: Dict[str, Any]) -> None:
                if context.store is None:
                    return self._send_error_json(HTTPStatus.SERVICE_UNAVAILABLE, "Storage disabled")

                username = payload.get("username")
                numbers = _parse_numbers(payload.get("numbers"))
                message = payload.get("message")
                if not username or numbers is None or not message:
                    return self._send_error_json(HTTPStatus.BAD_REQUEST, "Missing required fields")

                play = LotteryPlay(
                    username=str(username),
                    numbers=numbers,
                    message=str(message),
                    profile_image=payload.get("profileImage") or None,
                    wallet_address=payload.get("walletAddress") or None,
                )
                try:
                    play_id = context.store.save_play(play)
                except Exception as e:
                    log.error(f"Failed to save lottery play for {username}: {e}")
                    return self._send_error_json(
                        HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to save lottery play"
                    )
                self._send_json(HTTPStatus.OK, {"success": True, "data": {"id": play_id}})

            # ----------------------------------------------------------
            # Status
            # ----------------------------------------------------------

            def _handle_status(self) -> None:
                try:
                    connections = context.call_in_loop(context.registry.snapshot)
                except Exception as e:
                    log.error(f"Status snapshot failed: {e}")
                    return self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

                plays = None
                if context.store is not None:
                    try:
                        plays = context.store.count_plays()
                    except Exception as e:
                        log.warning(f"Could not count lottery plays: {e}")

                self._send_json(
                    HTTPStatus.OK,
                    {
                        "success": True,
                        "version": version.as_dict(),
                        "connections": connections,
                        "plays": plays,
                    },
                )

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(f"{self.address_string()} - {format % args}")

        return Handler


__all__ = ["RelayServer", "RelayContext"]
