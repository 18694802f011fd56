"""Tests for the viewer push channel and SSE frame encoding."""

import json

from services.relay.channel import KEEPALIVE_FRAME, ViewerChannel, encode_frame


class TestEncodeFrame:
    def test_event_and_json_data(self):
        frame = encode_frame("log", {"message": "hi"})
        assert frame == 'event: log\ndata: {"message": "hi"}\n\n'

    def test_data_is_single_line(self):
        frame = encode_frame("event", {"message": "a\nb"})
        lines = frame.rstrip("\n").split("\n")
        assert len(lines) == 2
        assert json.loads(lines[1][len("data: "):]) == {"message": "a\nb"}


class TestViewerChannel:
    def test_frames_until_close(self):
        channel = ViewerChannel()
        channel.push("log", {"n": 1})
        channel.push("event", {"n": 2})
        channel.close()

        frames = list(channel.frames())
        assert frames == [encode_frame("log", {"n": 1}), encode_frame("event", {"n": 2})]

    def test_close_is_idempotent(self):
        channel = ViewerChannel()
        assert channel.close() is True
        assert channel.close() is False
        assert channel.closed is True
        assert list(channel.frames()) == []

    def test_push_after_close_is_noop(self):
        channel = ViewerChannel()
        channel.close()
        assert channel.push("log", {"n": 1}) is False
        assert list(channel.frames()) == []

    def test_keepalive_on_silence(self):
        channel = ViewerChannel()
        frames = channel.frames(keepalive_seconds=0.01)
        assert next(frames) == KEEPALIVE_FRAME

        channel.push("log", {"n": 1})
        assert next(frames) == encode_frame("log", {"n": 1})
        channel.close()
        assert list(frames) == []

    def test_stops_when_viewer_gone_while_idle(self):
        channel = ViewerChannel()
        checks = []

        def alive():
            checks.append(1)
            return len(checks) < 3

        assert list(channel.frames(keepalive_seconds=60, alive=alive, poll_seconds=0.01)) == []
        assert len(checks) == 3
        assert channel.closed is False

    def test_keepalive_still_sent_while_polling(self):
        channel = ViewerChannel()
        frames = channel.frames(keepalive_seconds=0.05, alive=lambda: True, poll_seconds=0.01)
        assert next(frames) == KEEPALIVE_FRAME
        channel.close()
        assert list(frames) == []

    def test_queued_frames_dropped_once_viewer_gone(self):
        channel = ViewerChannel()
        channel.push("log", {"n": 1})
        assert list(channel.frames(alive=lambda: False)) == []
