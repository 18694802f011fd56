"""Tests for chat message normalization and the error taxonomy."""

import pytest

from services.pumpfun.errors import ConnectTimeoutError, TransportError
from services.pumpfun.models.message import PumpChatMessage


class TestPumpChatMessage:
    def test_from_payload(self):
        msg = PumpChatMessage.from_payload(
            {
                "id": "m1",
                "roomId": "room-1",
                "username": "alice",
                "userAddress": "0xA",
                "message": "gm",
                "profile_image": "https://img",
                "timestamp": "2026-01-01T00:00:00Z",
                "messageType": "REGULAR",
                "expiresAt": 1767225600,
            }
        )
        assert msg.id == "m1"
        assert msg.user_address == "0xA"
        assert msg.message_type == "REGULAR"
        assert msg.expires_at == 1767225600

    def test_alternate_keys(self):
        msg = PumpChatMessage.from_payload({"_id": "x", "room": "r", "text": "hi", "profileImage": "p"})
        assert (msg.id, msg.room_id, msg.message, msg.profile_image) == ("x", "r", "hi", "p")

    def test_missing_fields_default(self):
        msg = PumpChatMessage.from_payload({})
        assert msg.username == ""
        assert msg.expires_at == 0

    def test_bad_expiry_defaults(self):
        assert PumpChatMessage.from_payload({"expiresAt": "soon"}).expires_at == 0

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            PumpChatMessage.from_payload(["not", "a", "dict"])

    def test_to_dict_restores_protocol_keys(self):
        payload = {"id": "m1", "roomId": "r", "username": "u", "userAddress": "a", "message": "m"}
        data = PumpChatMessage.from_payload(payload).to_dict()
        assert data["roomId"] == "r"
        assert data["userAddress"] == "a"
        assert set(data) == {
            "id", "roomId", "username", "userAddress", "message",
            "profile_image", "timestamp", "messageType", "expiresAt",
        }

    def test_raw_not_part_of_equality(self):
        a = PumpChatMessage.from_payload({"id": "1", "extra": 1})
        b = PumpChatMessage.from_payload({"id": "1", "extra": 2})
        assert a == b


class TestErrors:
    def test_describe(self):
        assert TransportError("down", status_code=502).describe() == {"message": "down", "type": "TransportError"}
        assert ConnectTimeoutError("slow").describe()["type"] == "ConnectTimeoutError"
