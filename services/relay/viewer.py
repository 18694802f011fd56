import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from shared.logging.logger import get_logger

log = get_logger("relay.viewer")

STREAM_PATH = "/api/chat-debug"
MAX_LOG_LINES = 500


@dataclass
class RelayFrame:
    """One decoded frame from the relay's event stream."""

    event: str
    data: Dict[str, Any]


class RelayViewer:
    """
    Client side of the relay stream.

    Rules:
    - run() opens one stream and returns when the relay closes it or stop()
      is called; it does not reconnect on its own (/restart does that)
    - `log` frames land in `logs`, `event` frames in `events`
    - send_message() never raises; the outcome is logged and returned
    """

    def __init__(
        self,
        base_url: str,
        room_id: Optional[str] = None,
        username: Optional[str] = None,
        *,
        on_log: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_event: Optional[Callable[[Dict[str, Any]], None]] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_log_lines: int = MAX_LOG_LINES,
    ):
        self.base_url = base_url.rstrip("/")
        self.room_id = room_id
        self.username = username
        self.on_log = on_log
        self.on_event = on_event
        self.max_log_lines = max(1, int(max_log_lines))

        # Allow caller to supply a shared client; otherwise own lifecycle
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(10.0, read=None),
        )
        self._client_owned = client is None

        self.logs: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self._running = False
        self._stopped = False

    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._stopped = True

    def clear_logs(self) -> None:
        self.logs.clear()
        self.events.clear()

    async def run(self) -> None:
        params: Dict[str, str] = {}
        if self.room_id:
            params["roomId"] = self.room_id
        if self.username:
            params["username"] = self.username

        self._stopped = False
        self._running = True
        try:
            async with self._client.stream(
                "GET",
                f"{self.base_url}{STREAM_PATH}",
                params=params,
                headers={"Accept": "text/event-stream"},
            ) as resp:
                ct = resp.headers.get("content-type")
                if resp.status_code != 200 or (ct and "text/event-stream" not in ct):
                    body = (await resp.aread()).decode(errors="ignore")[:500]
                    self._record_log(f"❌ Relay refused stream [{resp.status_code}]: {body}")
                    return

                log.info(f"Relay stream connected ({self.base_url})")
                async for frame in self._read_stream(resp.aiter_lines()):
                    self._dispatch(frame)
                    if self._stopped:
                        break

        except httpx.HTTPError as e:
            log.warning(f"Relay stream error: {e}")
            self._record_log(f"❌ Relay stream error: {e}")
        finally:
            self._running = False
            log.info("Relay stream closed")

    async def send_message(self, text: str) -> bool:
        payload = {"action": "sendMessage", "roomId": self.room_id, "message": text}
        try:
            resp = await self._client.post(f"{self.base_url}{STREAM_PATH}", json=payload)
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self._record_log(f"❌ Error sending message: {e}")
            return False

        if resp.status_code == 200 and body.get("success"):
            self._record_log(f"📤 Message sent: {text}")
            return True

        self._record_log(f"❌ Failed to send message: {body.get('error', resp.status_code)}")
        return False

    async def aclose(self) -> None:
        self._stopped = True
        if self._client_owned:
            await self._client.aclose()

    # ------------------------------------------------------------------

    def _dispatch(self, frame: RelayFrame) -> None:
        if frame.event == "log":
            self._append_log(frame.data)
        elif frame.event == "event":
            self.events.append(frame.data)
            if self.on_event:
                self.on_event(frame.data)
        else:
            log.debug(f"Ignoring unknown relay frame '{frame.event}'")

    def _record_log(self, message: str) -> None:
        self._append_log({"message": message, "timestamp": datetime.now().strftime("%H:%M:%S")})

    def _append_log(self, entry: Dict[str, Any]) -> None:
        self.logs.append(entry)
        if len(self.logs) > self.max_log_lines:
            del self.logs[: len(self.logs) - self.max_log_lines]
        if self.on_log:
            self.on_log(entry)

    async def _read_stream(self, lines: AsyncIterator[str]) -> AsyncIterator[RelayFrame]:
        """
        Parse response lines into RelayFrame objects.
        """
        data_lines: List[str] = []
        event_name: Optional[str] = None

        async for raw_line in lines:
            if self._stopped:
                break

            line = raw_line.strip("\ufeff")

            # Empty line signals dispatch
            if line == "":
                if data_lines:
                    frame = self._decode(event_name, data_lines)
                    if frame is not None:
                        yield frame
                data_lines = []
                event_name = None
                continue

            # Comments/keepalives begin with ':'
            if line.startswith(":"):
                continue

            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip())
                continue

            if line.startswith("event:"):
                event_name = line[6:].strip() or event_name
                continue

        if data_lines and not self._stopped:
            frame = self._decode(event_name, data_lines)
            if frame is not None:
                yield frame

    @staticmethod
    def _decode(event_name: Optional[str], data_lines: List[str]) -> Optional[RelayFrame]:
        try:
            data = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            log.debug(f"Dropping undecodable relay frame '{event_name}'")
            return None
        if not isinstance(data, dict):
            return None
        return RelayFrame(event=event_name or "message", data=data)
