"""Runtime version metadata for the pump.fun chat relay.

This module is import-safe and exposes authoritative version identifiers for
the relay server status endpoint and the CLI viewer banner.
"""

from __future__ import annotations

PROJECT_NAME = "PumpChat Relay"
VERSION = "v0.3.0"
BUILD = "2026.10"
UPSTREAM = "livechat.pump.fun"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "UPSTREAM",
    "as_dict",
    "as_string",
]


def as_dict() -> dict[str, str]:
    """Return version metadata as a dictionary."""

    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
        "upstream": UPSTREAM,
    }


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
