from dataclasses import dataclass, field
from typing import Any, Dict


def _text(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return str(value)
    return ""


@dataclass(frozen=True)
class PumpChatMessage:
    """
    One chat utterance received from the pump.fun livechat room.

    Immutable once received; the session only changes which messages are
    kept in its history buffer. Field names follow Python conventions while
    `to_dict` restores the protocol's camelCase shape for relay consumers.
    """

    id: str
    room_id: str
    username: str
    message: str

    user_address: str = ""
    profile_image: str = ""
    timestamp: str = ""
    message_type: str = ""
    expires_at: int = 0

    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "PumpChatMessage":
        """
        Normalize a `newMessage` / `messageHistory` entry.

        The upstream schema is not contractual, so every field is optional
        except that the payload must be an object.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"chat message payload must be an object, got {type(payload).__name__}")

        expires_raw = payload.get("expiresAt")
        try:
            expires_at = int(expires_raw) if expires_raw is not None else 0
        except (TypeError, ValueError):
            expires_at = 0

        return cls(
            id=_text(payload, "id", "_id"),
            room_id=_text(payload, "roomId", "room"),
            username=_text(payload, "username"),
            message=_text(payload, "message", "text"),
            user_address=_text(payload, "userAddress"),
            profile_image=_text(payload, "profile_image", "profileImage"),
            timestamp=_text(payload, "timestamp"),
            message_type=_text(payload, "messageType"),
            expires_at=expires_at,
            raw=dict(payload),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "username": self.username,
            "userAddress": self.user_address,
            "message": self.message,
            "profile_image": self.profile_image,
            "timestamp": self.timestamp,
            "messageType": self.message_type,
            "expiresAt": self.expires_at,
        }
