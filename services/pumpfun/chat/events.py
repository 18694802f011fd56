"""Normalized session event vocabulary consumed by the relay layer."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class SessionEventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    MESSAGE = "message"
    MESSAGE_HISTORY = "messageHistory"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    SERVER_ERROR = "serverError"
    MAX_RECONNECTS_REACHED = "maxReconnectsReached"


@dataclass(frozen=True)
class SessionEvent:
    """
    Payload shapes by kind:

    - connected: connection info snapshot (dict)
    - disconnected: {"reason": str}
    - error: {"message": str, "type": str}
    - message: PumpChatMessage
    - messageHistory: list[PumpChatMessage], already truncated to capacity
    - userJoined: {"username": str, "address": str}
    - userLeft: {"address": str}
    - serverError: {"reason": str}
    - maxReconnectsReached: {"attempts": int}
    """

    kind: SessionEventKind
    payload: Any = None


SessionSubscriber = Callable[[SessionEvent], None]
