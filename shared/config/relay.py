"""
Relay configuration loader.

Resolution order (later wins):
1. dataclass defaults
2. shared/config/relay.json (optional)
3. PUMPCHAT_* environment variables (.env is honoured via python-dotenv)

Invalid values are ignored per-key with a warning; the loader never raises
for a malformed file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from shared.logging.logger import get_logger

log = get_logger("shared.config.relay")

_CONFIG_PATH = Path(__file__).parent / "relay.json"

DEFAULT_ENDPOINT = "wss://livechat.pump.fun"
DEFAULT_ROOM_ID = "J2eaKn35rp82T6RFEsNK9CLRHEKV9BLXjedFM3q6pump"


def _default_headers() -> Dict[str, str]:
    return {
        "Origin": "https://pump.fun",
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/124.0.0.0 Safari/537.36"
        ),
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Sec-WebSocket-Extensions": "permessage-deflate; client_max_window_bits",
        "Sec-WebSocket-Version": "13",
    }


@dataclass
class UpstreamConfig:
    url: str = DEFAULT_ENDPOINT
    socketio_path: str = "socket.io"
    transports: List[str] = field(default_factory=lambda: ["websocket"])
    headers: Dict[str, str] = field(default_factory=_default_headers)
    connect_timeout_ms: int = 20000


@dataclass
class SessionConfig:
    room_id: str = DEFAULT_ROOM_ID
    username: Optional[str] = None
    message_history_limit: int = 100
    max_reconnect_attempts: int = 5
    logging_enabled: bool = True


@dataclass
class RelayApiConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8210
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    keepalive_seconds: float = 15.0
    viewer_poll_seconds: float = 0.25


@dataclass
class StorageConfig:
    db_path: str = "data/lottery_plays.db"


@dataclass
class PlaysConfig:
    enabled: bool = True
    numbers_count: int = 4
    min_number: int = 1
    max_number: int = 49


@dataclass
class RelayConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    api: RelayApiConfig = field(default_factory=RelayApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    plays: PlaysConfig = field(default_factory=PlaysConfig)


# ------------------------------------------------------------
# Coercion helpers
# ------------------------------------------------------------

def _as_int(raw: Any, default: int, key: str, *, minimum: Optional[int] = None) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        log.warning(f"{key} must be an integer; defaulting to {default}")
        return default
    if minimum is not None and value < minimum:
        log.warning(f"{key} must be >= {minimum}; defaulting to {default}")
        return default
    return value


def _as_float(raw: Any, default: float, key: str) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warning(f"{key} must be a number; defaulting to {default}")
        return default
    if value <= 0:
        log.warning(f"{key} must be positive; defaulting to {default}")
        return default
    return value


def _as_bool(raw: Any, default: bool, key: str) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    log.warning(f"{key} must be boolean; defaulting to {default}")
    return default


def _as_str(raw: Any, default: Optional[str]) -> Optional[str]:
    if raw is None:
        return default
    value = str(raw).strip()
    return value or default


# ------------------------------------------------------------
# Section loaders
# ------------------------------------------------------------

def _load_upstream(raw: Any) -> UpstreamConfig:
    cfg = UpstreamConfig()
    if not isinstance(raw, dict):
        return cfg

    cfg.url = _as_str(raw.get("url"), cfg.url)
    cfg.socketio_path = _as_str(raw.get("socketio_path"), cfg.socketio_path)

    transports = raw.get("transports")
    if isinstance(transports, list) and all(isinstance(t, str) for t in transports) and transports:
        cfg.transports = list(transports)
    elif transports is not None:
        log.warning("upstream.transports must be a non-empty list of strings; using default")

    headers = raw.get("headers")
    if isinstance(headers, dict):
        # Header profile is replaced wholesale so deployments can drop fields.
        cfg.headers = {str(k): str(v) for k, v in headers.items()}
    elif headers is not None:
        log.warning("upstream.headers must be an object; using default header profile")

    cfg.connect_timeout_ms = _as_int(
        raw.get("connect_timeout_ms"), cfg.connect_timeout_ms, "upstream.connect_timeout_ms", minimum=1
    )
    return cfg


def _load_session(raw: Any) -> SessionConfig:
    cfg = SessionConfig()
    if not isinstance(raw, dict):
        return cfg

    cfg.room_id = _as_str(raw.get("room_id"), cfg.room_id)
    cfg.username = _as_str(raw.get("username"), cfg.username)
    cfg.message_history_limit = _as_int(
        raw.get("message_history_limit"), cfg.message_history_limit,
        "session.message_history_limit", minimum=1,
    )
    cfg.max_reconnect_attempts = _as_int(
        raw.get("max_reconnect_attempts"), cfg.max_reconnect_attempts,
        "session.max_reconnect_attempts", minimum=0,
    )
    cfg.logging_enabled = _as_bool(raw.get("logging_enabled"), cfg.logging_enabled, "session.logging_enabled")
    return cfg


def _load_api(raw: Any) -> RelayApiConfig:
    cfg = RelayApiConfig()
    if not isinstance(raw, dict):
        return cfg

    cfg.enabled = _as_bool(raw.get("enabled"), cfg.enabled, "api.enabled")
    cfg.host = _as_str(raw.get("host"), cfg.host)
    cfg.port = _as_int(raw.get("port"), cfg.port, "api.port", minimum=0)
    origins = raw.get("allow_origins")
    if isinstance(origins, list):
        cfg.allow_origins = [str(o) for o in origins]
    cfg.keepalive_seconds = _as_float(raw.get("keepalive_seconds"), cfg.keepalive_seconds, "api.keepalive_seconds")
    cfg.viewer_poll_seconds = _as_float(
        raw.get("viewer_poll_seconds"), cfg.viewer_poll_seconds, "api.viewer_poll_seconds"
    )
    return cfg


def _load_storage(raw: Any) -> StorageConfig:
    cfg = StorageConfig()
    if isinstance(raw, dict):
        cfg.db_path = _as_str(raw.get("db_path"), cfg.db_path)
    return cfg


def _load_plays(raw: Any) -> PlaysConfig:
    cfg = PlaysConfig()
    if not isinstance(raw, dict):
        return cfg

    cfg.enabled = _as_bool(raw.get("enabled"), cfg.enabled, "plays.enabled")
    cfg.numbers_count = _as_int(raw.get("numbers_count"), cfg.numbers_count, "plays.numbers_count", minimum=1)
    cfg.min_number = _as_int(raw.get("min_number"), cfg.min_number, "plays.min_number", minimum=0)
    cfg.max_number = _as_int(raw.get("max_number"), cfg.max_number, "plays.max_number", minimum=0)
    if cfg.max_number < cfg.min_number:
        log.warning("plays.max_number is below plays.min_number; using default range")
        cfg.min_number = PlaysConfig.min_number
        cfg.max_number = PlaysConfig.max_number
    return cfg


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"relay.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.warning(f"Failed to load relay.json ({e}); using defaults")
        return {}

    if not isinstance(data, dict):
        log.warning("relay.json root is not an object; using defaults")
        return {}
    return data


def _apply_env(cfg: RelayConfig, env: Mapping[str, str]) -> None:
    cfg.session.room_id = _as_str(env.get("PUMPCHAT_ROOM_ID"), cfg.session.room_id)
    cfg.session.username = _as_str(env.get("PUMPCHAT_USERNAME"), cfg.session.username)
    cfg.session.message_history_limit = _as_int(
        env.get("PUMPCHAT_HISTORY_LIMIT"), cfg.session.message_history_limit,
        "PUMPCHAT_HISTORY_LIMIT", minimum=1,
    )
    cfg.session.max_reconnect_attempts = _as_int(
        env.get("PUMPCHAT_MAX_RECONNECTS"), cfg.session.max_reconnect_attempts,
        "PUMPCHAT_MAX_RECONNECTS", minimum=0,
    )
    cfg.session.logging_enabled = _as_bool(
        env.get("PUMPCHAT_LOGGING"), cfg.session.logging_enabled, "PUMPCHAT_LOGGING"
    )
    cfg.api.host = _as_str(env.get("PUMPCHAT_API_HOST"), cfg.api.host)
    cfg.api.port = _as_int(env.get("PUMPCHAT_API_PORT"), cfg.api.port, "PUMPCHAT_API_PORT", minimum=0)
    cfg.storage.db_path = _as_str(env.get("PUMPCHAT_DB_PATH"), cfg.storage.db_path)


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_relay_config(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> RelayConfig:
    """
    Build the effective RelayConfig.

    Passing ``env`` skips .env loading and reads only the given mapping,
    which keeps tests hermetic.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    raw = _load_json(Path(path) if path else _CONFIG_PATH)

    cfg = RelayConfig(
        upstream=_load_upstream(raw.get("upstream")),
        session=_load_session(raw.get("session")),
        api=_load_api(raw.get("api")),
        storage=_load_storage(raw.get("storage")),
        plays=_load_plays(raw.get("plays")),
    )
    _apply_env(cfg, env)

    log.debug(
        f"Relay config resolved: room={cfg.session.room_id} "
        f"history={cfg.session.message_history_limit} "
        f"max_reconnects={cfg.session.max_reconnect_attempts} "
        f"api={cfg.api.host}:{cfg.api.port}"
    )
    return cfg
