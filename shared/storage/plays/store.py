"""Lottery play storage backed by SQLite."""

from __future__ import annotations

import json
import math
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("shared.plays.store")

DEFAULT_DB_PATH = Path("data/lottery_plays.db")

CHAT_ROOM_KEY = "chatRoomId"
CHAT_USERNAME_KEY = "chatUsername"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return _utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LotteryPlay:
    username: str
    numbers: List[int]
    message: str
    timestamp: datetime = field(default_factory=_utc_now)
    profile_image: Optional[str] = None
    wallet_address: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "profileImage": self.profile_image,
            "numbers": list(self.numbers),
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "message": self.message,
            "walletAddress": self.wallet_address,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LotteryPlay":
        return cls(
            id=row["id"],
            username=row["username"],
            profile_image=row["profile_image"] or None,
            numbers=json.loads(row["numbers"]),
            timestamp=_parse_ts(row["timestamp"]),
            message=row["message"],
            wallet_address=row["wallet_address"] or None,
        )


class LotteryPlayStore:
    """
    Persistence collaborator for plays parsed out of chat.

    save_play() is replace-by-author: any earlier play with the same username
    or the same (non-empty) wallet address is deleted in the same
    transaction before the new row is inserted.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._lock = threading.Lock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # SQLite setup
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lottery_plays (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    profile_image TEXT,
                    numbers TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    message TEXT NOT NULL,
                    wallet_address TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT UNIQUE NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_lottery_plays_ts
                ON lottery_plays(timestamp, id)
                """
            )

    # ------------------------------------------------------------------
    # Plays
    # ------------------------------------------------------------------

    def save_play(self, play: LotteryPlay) -> int:
        if not play.username:
            raise ValueError("username is required")
        if not play.numbers:
            raise ValueError("numbers are required")

        with self._lock, self._connect() as conn:
            deleted = conn.execute(
                """
                DELETE FROM lottery_plays
                WHERE username = ?
                   OR (wallet_address IS NOT NULL AND wallet_address = ?)
                """,
                (play.username, play.wallet_address or None),
            ).rowcount
            if deleted:
                log.info(
                    f"Removed {deleted} existing lottery play(s) for "
                    f"username={play.username} wallet={play.wallet_address}"
                )

            cursor = conn.execute(
                """
                INSERT INTO lottery_plays (
                    username, profile_image, numbers, timestamp, message, wallet_address
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    play.username,
                    play.profile_image or None,
                    json.dumps(list(play.numbers)),
                    play.timestamp.astimezone(timezone.utc).isoformat(),
                    play.message,
                    play.wallet_address or None,
                ),
            )
            play_id = int(cursor.lastrowid)

        play.id = play_id
        return play_id

    def recent_plays(self, limit: int = 10) -> List[LotteryPlay]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM lottery_plays ORDER BY timestamp DESC, id DESC LIMIT ?",
                (max(0, int(limit)),),
            ).fetchall()
        return [LotteryPlay.from_row(r) for r in rows]

    def plays_by_user(self, username: str) -> List[LotteryPlay]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM lottery_plays WHERE username = ? ORDER BY timestamp DESC, id DESC",
                (username,),
            ).fetchall()
        return [LotteryPlay.from_row(r) for r in rows]

    def count_plays(self) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM lottery_plays").fetchone()
        return int(row["count"]) if row else 0

    def paginated_plays(self, page: int = 1, limit: int = 10) -> Tuple[List[LotteryPlay], int, int]:
        page = max(1, int(page))
        limit = max(1, int(limit))
        offset = (page - 1) * limit

        with self._lock, self._connect() as conn:
            total = int(conn.execute("SELECT COUNT(*) AS count FROM lottery_plays").fetchone()["count"])
            rows = conn.execute(
                "SELECT * FROM lottery_plays ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()

        total_pages = math.ceil(total / limit) if total else 0
        return [LotteryPlay.from_row(r) for r in rows], total, total_pages

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def save_config(self, key: str, value: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO config (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _utc_now().isoformat()),
            )

    def get_config(self, key: str) -> Optional[str]:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def save_chat_config(self, room_id: str, username: str) -> None:
        self.save_config(CHAT_ROOM_KEY, room_id)
        self.save_config(CHAT_USERNAME_KEY, username)

    def get_chat_config(self) -> Dict[str, Optional[str]]:
        return {
            "chatRoomId": self.get_config(CHAT_ROOM_KEY),
            "chatUsername": self.get_config(CHAT_USERNAME_KEY),
        }
