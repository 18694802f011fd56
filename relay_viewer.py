"""
Interactive terminal viewer for the pump.fun chat relay.

Commands:
  /send <text>   send a chat message through the relay
  /start         open the relay stream if it is closed
  /restart       reopen the relay stream
  /stop          close the relay stream
  /clear         clear collected logs and events
  /quit          exit
"""

import argparse
import asyncio
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from runtime import version
from services.relay.viewer import RelayViewer
from shared.logging.logger import get_logger

log = get_logger("relay.cli", runtime="viewer")


def _env(key: str) -> str:
    return os.getenv(key, "").strip()


def _print_log(entry: Dict[str, Any]) -> None:
    print(f"[{entry.get('timestamp', '')}] {entry.get('message', '')}")


def _print_event(entry: Dict[str, Any]) -> None:
    if entry.get("eventName") != "newMessage":
        return
    for msg in entry.get("args") or []:
        if isinstance(msg, dict):
            print(f"💬 {msg.get('username')} → {msg.get('message')}")


async def _read_line(prompt: str = "") -> str:
    return await asyncio.to_thread(input, prompt)


async def _run(args) -> None:
    load_dotenv()

    base_url = args.url or _env("PUMPCHAT_RELAY_URL") or "http://127.0.0.1:8210"
    room_id = args.room or _env("PUMPCHAT_ROOM_ID") or None
    username = args.username or _env("PUMPCHAT_USERNAME") or None

    viewer = RelayViewer(
        base_url,
        room_id=room_id,
        username=username,
        on_log=_print_log,
        on_event=_print_event if not args.quiet_messages else None,
    )

    print(f"🔥 {version.as_string()}")
    print(f"📡 Relay → {base_url}")

    stream_task: Optional[asyncio.Task] = None

    def _start_stream() -> asyncio.Task:
        return asyncio.create_task(viewer.run())

    async def _stop_stream() -> None:
        nonlocal stream_task
        if stream_task is None:
            return
        viewer.stop()
        stream_task.cancel()
        try:
            await stream_task
        except asyncio.CancelledError:
            pass
        stream_task = None

    stream_task = _start_stream()
    try:
        while True:
            line = (await _read_line()).strip()
            if not line:
                continue

            if line.startswith("/send "):
                text = line[len("/send "):].strip()
                if text:
                    await viewer.send_message(text)
            elif line == "/start":
                if viewer.is_running():
                    print("Stream already running")
                else:
                    await _stop_stream()
                    stream_task = _start_stream()
                    print("▶ Stream started")
            elif line == "/restart":
                await _stop_stream()
                stream_task = _start_stream()
                print("🔄 Stream restarted")
            elif line == "/stop":
                await _stop_stream()
                print("⏹ Stream stopped")
            elif line == "/clear":
                viewer.clear_logs()
                print("🧹 Logs cleared")
            elif line in ("/quit", "/exit"):
                break
            else:
                print("Commands: /send <text>, /start, /restart, /stop, /clear, /quit")

    except (EOFError, KeyboardInterrupt):
        log.info("Input closed, shutting down viewer")
    finally:
        await _stop_stream()
        await viewer.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="pump.fun chat relay viewer (server-sent events)"
    )
    parser.add_argument("--url", help="Relay base URL (default http://127.0.0.1:8210)")
    parser.add_argument("--room", help="pump.fun room id (token mint address)")
    parser.add_argument("--username", help="Username to join the room with")
    parser.add_argument(
        "--quiet-messages",
        action="store_true",
        help="Only print relay log lines, not chat messages",
    )

    args = parser.parse_args()
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
