import json
import queue
import threading
from typing import Any, Callable, Dict, Iterator, Optional

from shared.logging.logger import get_logger

log = get_logger("relay.channel")

KEEPALIVE_FRAME = ": keepalive\n\n"

_CLOSE = object()


def encode_frame(event: str, data: Dict[str, Any]) -> str:
    """Render one Server-Sent Events frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class ViewerChannel:
    """
    One viewer's push stream.

    The bridge pushes from the event loop thread; the HTTP handler thread
    drains frames(). Both sides may try to close, so close() is idempotent
    and push() after close is a silent no-op.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def push(self, event: str, data: Dict[str, Any]) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.put(encode_frame(event, data))
            return True

    def close(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._queue.put(_CLOSE)
        log.debug("Viewer channel closed")
        return True

    def frames(
        self,
        keepalive_seconds: Optional[float] = None,
        *,
        alive: Optional[Callable[[], bool]] = None,
        poll_seconds: float = 0.25,
    ) -> Iterator[str]:
        """
        Yield encoded frames until the channel is closed.

        With keepalive_seconds set, a comment frame is yielded after that much
        silence so a dead viewer is detected on the next write.

        With alive set, it is asked every poll_seconds of silence and before
        each frame; the iterator ends as soon as it returns False.
        """
        wait = keepalive_seconds
        if alive is not None:
            wait = poll_seconds if wait is None else min(wait, poll_seconds)

        idle = 0.0
        while True:
            try:
                item = self._queue.get(timeout=wait)
            except queue.Empty:
                if self.closed:
                    return
                if alive is not None and not alive():
                    log.debug("Viewer gone while idle")
                    return
                idle += wait
                if keepalive_seconds is not None and idle >= keepalive_seconds:
                    idle = 0.0
                    yield KEEPALIVE_FRAME
                continue

            idle = 0.0
            if item is _CLOSE:
                return
            if alive is not None and not alive():
                log.debug("Viewer gone before frame delivery")
                return
            yield item
