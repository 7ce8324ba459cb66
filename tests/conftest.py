from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tasklock.manager import TaskLockManager
from tasklock.models import LockIdentity, TaskLock
from tasklock.store import LockStore

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock injected into managers under test."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, *, minutes: float = 0, seconds: float = 0) -> None:
        self.current = self.current + timedelta(minutes=minutes, seconds=seconds)


def make_identity(session_id: str = "session-a", **overrides: object) -> LockIdentity:
    values: dict[str, object] = {
        "session_id": session_id,
        "pid": 4242,
        "hostname": "worker-host",
    }
    values.update(overrides)
    return LockIdentity(**values)  # type: ignore[arg-type]


def make_lock(
    issue_number: int,
    *,
    now: datetime = START,
    heartbeat_age_minutes: float = 0,
    locked_minutes: float | None = None,
    session_id: str | None = None,
) -> TaskLock:
    locked = heartbeat_age_minutes if locked_minutes is None else locked_minutes
    return TaskLock(
        issue_number=issue_number,
        session_id=session_id or f"session-{issue_number}",
        pid=1000 + issue_number,
        hostname="remote-cluster",
        created_at=now - timedelta(minutes=locked),
        last_heartbeat=now - timedelta(minutes=heartbeat_age_minutes),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> LockStore:
    return LockStore(tmp_path / ".tasklock" / "locks")


@pytest.fixture
def manager(store: LockStore, clock: FakeClock) -> TaskLockManager:
    return TaskLockManager(store, timeout_minutes=120, clock=clock)
