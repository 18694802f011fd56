import re
from datetime import datetime, timezone
from typing import List, Optional

from services.pumpfun.models.message import PumpChatMessage
from shared.storage.plays.store import LotteryPlay

# A run of integers separated by whitespace or one of , / . -
# e.g. "7 14 21 42", "7,14,21,42", "7-14-21-42".
_NUMBER_RUN = re.compile(
    r"(?<![A-Za-z0-9])\d+(?:(?:\s*[,/.\-]\s*|\s+)\d+)*(?![A-Za-z0-9])"
)
_DIGITS = re.compile(r"\d+")


def extract_numbers(
    text: str,
    *,
    count: int = 4,
    low: int = 1,
    high: int = 49,
) -> Optional[List[int]]:
    """
    Return the first run of exactly `count` numbers within [low, high].

    Runs that are longer or shorter than `count`, or contain an out-of-range
    value, are skipped rather than truncated.
    """
    if not text:
        return None

    for match in _NUMBER_RUN.finditer(text):
        numbers = [int(d) for d in _DIGITS.findall(match.group(0))]
        if len(numbers) != count:
            continue
        if all(low <= n <= high for n in numbers):
            return numbers
    return None


def extract_play(
    message: PumpChatMessage,
    *,
    count: int = 4,
    low: int = 1,
    high: int = 49,
) -> Optional[LotteryPlay]:
    numbers = extract_numbers(message.message, count=count, low=low, high=high)
    if numbers is None or not message.username:
        return None

    return LotteryPlay(
        username=message.username,
        numbers=numbers,
        message=message.message,
        timestamp=datetime.now(timezone.utc),
        profile_image=message.profile_image or None,
        wallet_address=message.user_address or None,
    )
