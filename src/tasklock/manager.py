"""Lock lifecycle: acquire, renew, release, and stale-lock recovery.

The manager composes the record store with the staleness policy. It never
retries contention, never exits the process, and keeps no state besides the
configured timeout; each call observes the directory afresh.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from tasklock.config import _load_lock_policy
from tasklock.constants import (
    DEFAULT_LOCK_TIMEOUT_MINUTES,
    HEARTBEAT_INTERVAL_SECONDS,
    LOCKS_DIRECTORY,
)
from tasklock.models import (
    AcquireOutcome,
    Acquired,
    AlreadyLocked,
    CorruptLockError,
    LockIdentity,
    LockLost,
    LockStatus,
    NotHeld,
    ReleaseOutcome,
    Released,
    Renewed,
    RenewOutcome,
    TaskLock,
)
from tasklock.staleness import classify
from tasklock.store import LockStore
from tasklock.utils import utc_now

_CREATE_ATTEMPTS = 3


def _check_issue_number(issue_number: int) -> int:
    if isinstance(issue_number, bool) or not isinstance(issue_number, int) or issue_number < 1:
        raise ValueError(f"issue number must be a positive integer, got {issue_number!r}")
    return issue_number


class TaskLockManager:
    def __init__(
        self,
        store: LockStore,
        *,
        timeout_minutes: int = DEFAULT_LOCK_TIMEOUT_MINUTES,
        heartbeat_interval_seconds: int = HEARTBEAT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if timeout_minutes <= 0:
            raise ValueError(f"timeout_minutes must be > 0, got {timeout_minutes}")
        self.store = store
        self.timeout_minutes = timeout_minutes
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self._clock = clock

    @classmethod
    def for_state_dir(
        cls,
        state_dir: Path,
        *,
        timeout_minutes: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> TaskLockManager:
        """Build a manager over ``<state_dir>/locks`` using ``<state_dir>/config.yaml``."""
        policy = _load_lock_policy(state_dir)
        return cls(
            LockStore(Path(state_dir) / LOCKS_DIRECTORY),
            timeout_minutes=timeout_minutes or policy.timeout_minutes,
            heartbeat_interval_seconds=policy.heartbeat_interval_seconds,
            clock=clock,
        )

    def _timeout(self, timeout_minutes: int | None) -> int:
        return timeout_minutes if timeout_minutes is not None else self.timeout_minutes

    def _status(self, lock: TaskLock, now: datetime, timeout_minutes: int | None = None) -> LockStatus:
        return LockStatus(lock=lock, classification=classify(lock, now, self._timeout(timeout_minutes)))

    def _read_or_none(self, issue_number: int) -> TaskLock | None:
        try:
            return self.store.read(issue_number)
        except CorruptLockError:
            return None

    # -----------------------------------------------------------------------
    # Holder operations
    # -----------------------------------------------------------------------

    def acquire(
        self,
        issue_number: int,
        identity: LockIdentity,
        *,
        take_over_stale: bool = False,
    ) -> AcquireOutcome:
        """Claim ``issue_number`` without blocking.

        A record already owned by ``identity.session_id`` is refreshed and
        reported as reacquired. With ``take_over_stale`` a stale holder is
        evicted and creation is attempted again; an active holder is never
        displaced.
        """
        _check_issue_number(issue_number)
        now = self._clock()
        candidate = TaskLock.new(issue_number, identity, now=now)
        took_over: TaskLock | None = None

        for _ in range(_CREATE_ATTEMPTS):
            if self.store.create(candidate):
                return Acquired(lock=candidate, took_over=took_over)
            try:
                holder = self.store.read(issue_number)
            except CorruptLockError:
                return AlreadyLocked(issue_number=issue_number, holder=None, classification=None)
            if holder is None:
                # Released between our create attempt and the read.
                continue
            if holder.session_id == identity.session_id:
                refreshed = holder.with_heartbeat(now)
                if self.store.update(refreshed):
                    return Acquired(lock=refreshed, reacquired=True)
                continue
            classification = classify(holder, now, self.timeout_minutes)
            if take_over_stale and classification.is_stale and self.store.evict(holder):
                took_over = holder
                continue
            return AlreadyLocked(issue_number=issue_number, holder=holder, classification=classification)

        holder = self._read_or_none(issue_number)
        classification = classify(holder, now, self.timeout_minutes) if holder is not None else None
        return AlreadyLocked(issue_number=issue_number, holder=holder, classification=classification)

    def renew(self, issue_number: int, *, session_id: str) -> RenewOutcome:
        """Refresh the heartbeat. ``LockLost`` means the caller must stop working on the item."""
        _check_issue_number(issue_number)
        holder = self._read_or_none(issue_number)
        if holder is None:
            return LockLost(issue_number=issue_number)
        if holder.session_id != session_id:
            return LockLost(issue_number=issue_number, holder=holder)
        refreshed = holder.with_heartbeat(self._clock())
        if not self.store.update(refreshed):
            return LockLost(issue_number=issue_number)
        return Renewed(lock=refreshed)

    def release(self, issue_number: int) -> ReleaseOutcome:
        _check_issue_number(issue_number)
        if self.store.delete(issue_number):
            return Released(issue_number=issue_number)
        return NotHeld(issue_number=issue_number)

    # -----------------------------------------------------------------------
    # Operator operations
    # -----------------------------------------------------------------------

    def force_release(self, issue_number: int) -> bool:
        """Remove the record regardless of staleness or owner."""
        _check_issue_number(issue_number)
        return self.store.delete(issue_number)

    def inspect(self, issue_number: int, *, timeout_minutes: int | None = None) -> LockStatus | None:
        _check_issue_number(issue_number)
        lock = self.store.read(issue_number)
        if lock is None:
            return None
        return self._status(lock, self._clock(), timeout_minutes)

    def list_locks(self, *, timeout_minutes: int | None = None) -> list[LockStatus]:
        now = self._clock()
        return [self._status(lock, now, timeout_minutes) for lock in self.store.list_all()]

    def find_stale(self, *, timeout_minutes: int | None = None) -> list[LockStatus]:
        return [status for status in self.list_locks(timeout_minutes=timeout_minutes) if status.is_stale]

    def evict_stale(self, stale: list[LockStatus]) -> list[LockStatus]:
        """Remove the scanned stale locks that are still unchanged; return those removed.

        A holder that heartbeats between the scan and the removal keeps its lock.
        """
        return [status for status in stale if self.store.evict(status.lock)]

    def cleanup_stale(self, *, timeout_minutes: int | None = None) -> int:
        """Remove stale locks and return how many were actually removed."""
        return len(self.evict_stale(self.find_stale(timeout_minutes=timeout_minutes)))

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def is_locked(self, issue_number: int) -> bool:
        _check_issue_number(issue_number)
        return self.store.path_for(issue_number).exists()

    def is_locked_by_other(self, issue_number: int, session_id: str) -> bool:
        """True when another session holds an active (non-stale) lock on the item."""
        _check_issue_number(issue_number)
        holder = self._read_or_none(issue_number)
        if holder is None or holder.session_id == session_id:
            return False
        return not classify(holder, self._clock(), self.timeout_minutes).is_stale

    def release_session_locks(self, session_id: str) -> int:
        released = 0
        for lock in self.store.list_all():
            if lock.session_id == session_id and self.store.evict(lock):
                released += 1
        return released
