"""Tasklock utilities: clock, timestamp codec, session ids, and the audit log."""

from __future__ import annotations

import os
import secrets
import socket
import string
from datetime import datetime, timezone
from pathlib import Path

from tasklock.constants import LOG_RELATIVE_PATH

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _utc_now() -> str:
    return _format_utc(utc_now())


def _parse_utc(value: str) -> datetime | None:
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _format_duration(seconds: float) -> str:
    """Render a second count as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    timestamp = _to_base36(int(utc_now().timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(6))
    return f"{socket.gethostname()}-{os.getpid()}-{timestamp}-{suffix}"


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


def _log_path(state_dir: Path) -> Path:
    return state_dir.joinpath(*LOG_RELATIVE_PATH)


def _append_log(state_dir: Path, message: str) -> None:
    log_path = _log_path(state_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(f"{_utc_now()} {message}\n")
