"""Tests for the relay viewer client against a mocked relay."""

import json

import httpx
import pytest

from services.relay.channel import KEEPALIVE_FRAME, encode_frame
from services.relay.viewer import RelayViewer


def _sse_body(*frames):
    return "".join(frames).encode("utf-8")


def _viewer(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RelayViewer("http://relay.test", room_id="room-1", username="bob", client=client, **kwargs)


class TestStream:
    @pytest.mark.asyncio
    async def test_parses_log_and_event_frames(self):
        seen_params = {}

        def handler(request):
            seen_params.update(request.url.params)
            body = _sse_body(
                encode_frame("log", {"message": "🚀 Starting", "timestamp": "12:00:00"}),
                KEEPALIVE_FRAME,
                encode_frame("event", {"eventName": "newMessage", "args": [{"message": "gm"}], "timestamp": "12:00:01"}),
            )
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        logged, evented = [], []
        viewer = _viewer(handler, on_log=logged.append, on_event=evented.append)
        await viewer.run()

        assert seen_params == {"roomId": "room-1", "username": "bob"}
        assert [entry["message"] for entry in viewer.logs] == ["🚀 Starting"]
        assert viewer.events[0]["eventName"] == "newMessage"
        assert logged == viewer.logs
        assert evented == viewer.events
        assert viewer.is_running() is False

    @pytest.mark.asyncio
    async def test_trailing_frame_without_blank_line(self):
        def handler(request):
            body = b'event: log\ndata: {"message": "tail"}'
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        viewer = _viewer(handler)
        await viewer.run()
        assert [entry["message"] for entry in viewer.logs] == ["tail"]

    @pytest.mark.asyncio
    async def test_undecodable_frames_dropped(self):
        def handler(request):
            body = _sse_body("event: log\ndata: {broken\n\n", encode_frame("log", {"message": "ok"}))
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

        viewer = _viewer(handler)
        await viewer.run()
        assert [entry["message"] for entry in viewer.logs] == ["ok"]

    @pytest.mark.asyncio
    async def test_refused_stream_is_logged(self):
        def handler(request):
            return httpx.Response(500, json={"success": False, "error": "boom"})

        viewer = _viewer(handler)
        await viewer.run()

        assert viewer.events == []
        assert viewer.logs[0]["message"].startswith("❌ Relay refused stream [500]")

    @pytest.mark.asyncio
    async def test_clear_logs(self):
        def handler(request):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_sse_body(encode_frame("log", {"message": "x"})),
            )

        viewer = _viewer(handler)
        await viewer.run()
        viewer.clear_logs()
        assert viewer.logs == [] and viewer.events == []

    @pytest.mark.asyncio
    async def test_log_buffer_is_bounded(self):
        def handler(request):
            frames = [encode_frame("log", {"message": str(n)}) for n in range(10)]
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=_sse_body(*frames))

        viewer = _viewer(handler, max_log_lines=3)
        await viewer.run()
        assert [entry["message"] for entry in viewer.logs] == ["7", "8", "9"]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_success(self):
        posted = {}

        def handler(request):
            posted.update(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "message": "Message sent"})

        viewer = _viewer(handler)
        assert await viewer.send_message("gm") is True
        assert posted == {"action": "sendMessage", "roomId": "room-1", "message": "gm"}
        assert viewer.logs[-1]["message"] == "📤 Message sent: gm"

    @pytest.mark.asyncio
    async def test_relay_rejection(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "error": "No active connection found"})

        viewer = _viewer(handler)
        assert await viewer.send_message("gm") is False
        assert viewer.logs[-1]["message"] == "❌ Failed to send message: No active connection found"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        viewer = _viewer(handler)
        assert await viewer.send_message("gm") is False
        assert viewer.logs[-1]["message"].startswith("❌ Error sending message")
