import asyncio
from typing import Optional, Set

from services.plays.extractor import extract_play
from services.pumpfun.models.message import PumpChatMessage
from shared.logging.logger import get_logger
from shared.storage.plays.store import LotteryPlay, LotteryPlayStore

log = get_logger("plays.recorder")


class PlayRecorder:
    """
    Turns chat messages into persisted lottery plays.

    Extraction is cheap and runs inline; the SQLite write is pushed to a
    worker thread so the event loop shared by every session never blocks.
    Storage failures are logged and never propagate to the caller.
    """

    def __init__(
        self,
        store: LotteryPlayStore,
        *,
        numbers_count: int = 4,
        min_number: int = 1,
        max_number: int = 49,
    ):
        self.store = store
        self.numbers_count = numbers_count
        self.min_number = min_number
        self.max_number = max_number
        self._tasks: Set[asyncio.Task] = set()

    def handle_message(self, message: PumpChatMessage) -> Optional[asyncio.Task]:
        """Fire-and-forget variant used from session event callbacks."""
        play = self._extract(message)
        if play is None:
            return None

        task = asyncio.get_running_loop().create_task(self._persist(play))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def record(self, message: PumpChatMessage) -> Optional[int]:
        play = self._extract(message)
        if play is None:
            return None
        return await self._persist(play)

    def _extract(self, message: PumpChatMessage) -> Optional[LotteryPlay]:
        return extract_play(
            message,
            count=self.numbers_count,
            low=self.min_number,
            high=self.max_number,
        )

    async def _persist(self, play: LotteryPlay) -> Optional[int]:
        try:
            play_id = await asyncio.to_thread(self.store.save_play, play)
        except Exception as e:
            log.error(f"Failed to save lottery play for {play.username}: {e}")
            return None

        log.info(f"Recorded lottery play #{play_id} for {play.username}: {play.numbers}")
        return play_id
