"""Persistence for lottery plays parsed out of chat."""

from shared.storage.plays.store import LotteryPlay, LotteryPlayStore

__all__ = ["LotteryPlay", "LotteryPlayStore"]
