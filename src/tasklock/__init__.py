"""File-backed task locks shared by worker processes across hosts."""

from __future__ import annotations

from tasklock.heartbeat import LockHeartbeat
from tasklock.manager import TaskLockManager
from tasklock.models import (
    Acquired,
    AlreadyLocked,
    CorruptLockError,
    LockClassification,
    LockIdentity,
    LockLost,
    LockLostError,
    LockStatus,
    LockStoreError,
    NotHeld,
    Released,
    Renewed,
    TaskLock,
    UnlockResult,
)
from tasklock.staleness import classify, is_lock_stale
from tasklock.store import LockStore

__all__ = [
    "Acquired",
    "AlreadyLocked",
    "CorruptLockError",
    "LockClassification",
    "LockHeartbeat",
    "LockIdentity",
    "LockLost",
    "LockLostError",
    "LockStatus",
    "LockStore",
    "LockStoreError",
    "NotHeld",
    "Released",
    "Renewed",
    "TaskLock",
    "TaskLockManager",
    "UnlockResult",
    "classify",
    "is_lock_stale",
]
