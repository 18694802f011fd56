"""
Error taxonomy for the pump.fun chat session.

Connectivity failures (TransportError, ConnectTimeoutError) are recovered
inside the session and only surface as `error` / `disconnected` events.
ProtocolError and ReconnectExhaustedError describe the `serverError` and
`maxReconnectsReached` events. Only SessionStoppedError is ever raised to
callers, for API misuse on a stopped session.
"""


class PumpChatError(Exception):
    """Base class for chat session failures."""

    kind = "PumpChatError"

    def describe(self) -> dict:
        return {"message": str(self), "type": self.kind}


class TransportError(PumpChatError):
    """Socket could not be opened or was lost (includes upstream 502s)."""

    kind = "TransportError"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectTimeoutError(PumpChatError):
    kind = "ConnectTimeoutError"


class ProtocolError(PumpChatError):
    """Server rejected a join or history request."""

    kind = "ProtocolError"


class ReconnectExhaustedError(PumpChatError):
    kind = "ReconnectExhaustedError"


class SessionStoppedError(PumpChatError):
    """connect() was called on a session that was explicitly disconnected."""

    kind = "SessionStoppedError"
