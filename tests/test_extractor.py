"""Tests for lottery number extraction from chat text."""

import pytest

from services.plays.extractor import extract_numbers, extract_play
from services.pumpfun.models.message import PumpChatMessage


class TestExtractNumbers:
    @pytest.mark.parametrize(
        "text",
        [
            "7 14 21 42",
            "my pick: 7,14,21,42 good luck",
            "7-14-21-42",
            "7 / 14 / 21 / 42",
            "7.14.21.42",
        ],
    )
    def test_separators(self, text):
        assert extract_numbers(text) == [7, 14, 21, 42]

    def test_too_few(self):
        assert extract_numbers("1 2 3") is None

    def test_too_many_is_not_truncated(self):
        assert extract_numbers("1 2 3 4 5") is None

    def test_out_of_range(self):
        assert extract_numbers("50 1 2 3") is None
        assert extract_numbers("0 1 2 3") is None

    def test_skips_to_first_valid_run(self):
        assert extract_numbers("first 1 2 then 5 6 7 8") == [5, 6, 7, 8]

    def test_digits_glued_to_letters_ignored(self):
        assert extract_numbers("abc12 1 2 3 4") == [1, 2, 3, 4]

    def test_empty(self):
        assert extract_numbers("") is None
        assert extract_numbers("gm") is None

    def test_custom_shape(self):
        assert extract_numbers("3 60", count=2, low=1, high=60) == [3, 60]


class TestExtractPlay:
    def _message(self, **kwargs):
        defaults = dict(id="m1", room_id="room-1", username="alice", message="7 14 21 42")
        defaults.update(kwargs)
        return PumpChatMessage(**defaults)

    def test_builds_play(self):
        play = extract_play(self._message(user_address="0xA", profile_image="https://img"))
        assert play.username == "alice"
        assert play.numbers == [7, 14, 21, 42]
        assert play.message == "7 14 21 42"
        assert play.wallet_address == "0xA"
        assert play.profile_image == "https://img"
        assert play.id is None

    def test_blank_optional_fields_become_none(self):
        play = extract_play(self._message())
        assert play.wallet_address is None
        assert play.profile_image is None

    def test_no_numbers(self):
        assert extract_play(self._message(message="gm frens")) is None

    def test_no_username(self):
        assert extract_play(self._message(username="")) is None
