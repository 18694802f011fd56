import asyncio
import signal
import sys
from functools import partial

from core.registry import ConnectionRegistry
from runtime import version
from services.plays.recorder import PlayRecorder
from services.pumpfun.chat.session import create_session
from services.relay.server import RelayContext, RelayServer
from shared.config.relay import RelayConfig, load_relay_config
from shared.logging.logger import get_logger
from shared.storage.plays.store import LotteryPlayStore

log = get_logger("core.app")


def _session_factory(config: RelayConfig, room_id: str, username: str):
    return create_session(config, room_id, username)


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # CONFIG (.env honoured by the loader)
    # --------------------------------------------------
    config = load_relay_config()
    log.info(f"{version.as_string()} booting")
    log.info(f"Upstream endpoint: {config.upstream.url}")

    # --------------------------------------------------
    # STORAGE + PLAY RECORDING (FEATURE-GATED)
    # --------------------------------------------------
    store = LotteryPlayStore(config.storage.db_path)
    log.info(f"Lottery play store ready at {store.db_path}")

    recorder = None
    if config.plays.enabled:
        recorder = PlayRecorder(
            store,
            numbers_count=config.plays.numbers_count,
            min_number=config.plays.min_number,
            max_number=config.plays.max_number,
        )
        log.info("Lottery play recording enabled")
    else:
        log.info("Lottery play recording NOT enabled")

    # --------------------------------------------------
    # RELAY SERVER
    # --------------------------------------------------
    registry = ConnectionRegistry()
    context = RelayContext(
        loop=asyncio.get_running_loop(),
        registry=registry,
        session_factory=partial(_session_factory, config),
        default_room_id=config.session.room_id,
        default_username=config.session.username,
        store=store,
        recorder=recorder,
    )
    server = RelayServer(config.api, context)
    server.start()

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: UPSTREAM SESSIONS FIRST
    # --------------------------------------------------
    # Eviction also closes every attached viewer stream.
    registry.close_all()

    # Let transport disconnect tasks run before the loop is torn down.
    await asyncio.sleep(0.1)

    try:
        server.stop()
    except Exception as e:
        log.warning(f"Relay server shutdown error ignored: {e}")

    log.info("PumpChat relay stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")
        stop_event.set()

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        # --------------------------------------------------
        # FINAL LOOP CLEANUP
        # --------------------------------------------------
        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
