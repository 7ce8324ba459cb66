from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from tasklock.constants import (
    CONFIG_FILENAME,
    DEFAULT_LOCK_TIMEOUT_MINUTES,
    HEARTBEAT_INTERVAL_SECONDS,
)
from tasklock.models import LockPolicyConfig, _coerce_positive_int


def _load_config_file(state_dir: Path) -> dict[str, Any]:
    config_path = Path(state_dir) / CONFIG_FILENAME
    if not config_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _load_lock_policy(state_dir: Path) -> LockPolicyConfig:
    config = _load_config_file(state_dir)
    task_lock = config.get("task_lock")
    if not isinstance(task_lock, dict):
        task_lock = {}
    return LockPolicyConfig(
        timeout_minutes=_coerce_positive_int(
            task_lock.get("timeout_minutes"), default=DEFAULT_LOCK_TIMEOUT_MINUTES
        ),
        heartbeat_interval_seconds=_coerce_positive_int(
            task_lock.get("heartbeat_interval_seconds"), default=HEARTBEAT_INTERVAL_SECONDS
        ),
    )


def _write_default_config(state_dir: Path) -> Path:
    """Create ``config.yaml`` with the default lock policy if it is missing."""
    config_path = Path(state_dir) / CONFIG_FILENAME
    if config_path.exists():
        return config_path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "task_lock": {
            "timeout_minutes": DEFAULT_LOCK_TIMEOUT_MINUTES,
            "heartbeat_interval_seconds": HEARTBEAT_INTERVAL_SECONDS,
        }
    }
    config_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return config_path
