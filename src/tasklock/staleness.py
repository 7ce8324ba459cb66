"""Read-time staleness classification of lock records. No I/O."""

from __future__ import annotations

import math
from datetime import datetime

from tasklock.constants import DEFAULT_LOCK_TIMEOUT_MINUTES
from tasklock.models import LockClassification, TaskLock


def _elapsed_seconds(since: datetime, now: datetime) -> float:
    return max(0.0, (now - since).total_seconds())


def classify(
    lock: TaskLock,
    now: datetime,
    timeout_minutes: int = DEFAULT_LOCK_TIMEOUT_MINUTES,
) -> LockClassification:
    """Classify ``lock`` against ``now``.

    A lock is stale once its heartbeat is strictly older than the timeout;
    an age of exactly ``timeout_minutes * 60`` seconds is still active. A lock
    that was never heartbeated is aged from its creation time.
    """
    if timeout_minutes <= 0:
        raise ValueError(f"timeout_minutes must be > 0, got {timeout_minutes}")
    reference = lock.last_heartbeat if lock.last_heartbeat is not None else lock.created_at
    heartbeat_age = _elapsed_seconds(reference, now)
    return LockClassification(
        is_stale=heartbeat_age > timeout_minutes * 60,
        locked_seconds=math.floor(_elapsed_seconds(lock.created_at, now)),
        heartbeat_age_seconds=math.floor(heartbeat_age),
    )


def is_lock_stale(
    lock: TaskLock,
    now: datetime,
    timeout_minutes: int = DEFAULT_LOCK_TIMEOUT_MINUTES,
) -> bool:
    return classify(lock, now, timeout_minutes).is_stale
