"""Tasklock data models: exceptions, lock records, and operation outcomes."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from tasklock.constants import UNLOCK_ACTIONS, UNLOCK_OUTCOMES
from tasklock.utils import _format_utc, _parse_utc, generate_session_id


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except Exception:
        return default
    return parsed if parsed > 0 else default


def _optional_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


class LockStoreError(RuntimeError):
    """Raised when the lock directory cannot be read or written."""


class CorruptLockError(LockStoreError):
    """Raised when a lock record exists but does not hold a valid lock."""


class LockLostError(RuntimeError):
    """Raised when a holder discovers its lock record was removed or replaced."""


# ---------------------------------------------------------------------------
# Lock records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LockIdentity:
    """Who is acquiring a lock; supplied by the caller, never discovered by the core."""

    session_id: str
    pid: int
    hostname: str
    worker_id: str | None = None
    repo_name: str | None = None

    @classmethod
    def for_current_process(
        cls,
        *,
        session_id: str | None = None,
        worker_id: str | None = None,
        repo_name: str | None = None,
    ) -> LockIdentity:
        return cls(
            session_id=session_id or generate_session_id(),
            pid=os.getpid(),
            hostname=socket.gethostname(),
            worker_id=worker_id,
            repo_name=repo_name,
        )


@dataclass(frozen=True)
class TaskLock:
    issue_number: int
    session_id: str
    pid: int
    hostname: str
    created_at: datetime
    last_heartbeat: datetime | None
    worker_id: str | None = None
    repo_name: str | None = None

    @classmethod
    def new(cls, issue_number: int, identity: LockIdentity, *, now: datetime) -> TaskLock:
        # Persisted timestamps carry whole seconds; keep the in-memory record identical.
        stamp = now.replace(microsecond=0)
        return cls(
            issue_number=issue_number,
            session_id=identity.session_id,
            pid=identity.pid,
            hostname=identity.hostname,
            created_at=stamp,
            last_heartbeat=stamp,
            worker_id=identity.worker_id,
            repo_name=identity.repo_name,
        )

    def with_heartbeat(self, now: datetime) -> TaskLock:
        stamp = max(now.replace(microsecond=0), self.created_at)
        return replace(self, last_heartbeat=stamp)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "issue_number": self.issue_number,
            "session_id": self.session_id,
            "pid": self.pid,
            "hostname": self.hostname,
            "created_at": _format_utc(self.created_at),
            "last_heartbeat": (
                _format_utc(self.last_heartbeat) if self.last_heartbeat is not None else None
            ),
        }
        if self.worker_id is not None:
            payload["worker_id"] = self.worker_id
        if self.repo_name is not None:
            payload["repo_name"] = self.repo_name
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> TaskLock:
        if not isinstance(payload, dict):
            raise ValueError("lock record must be a JSON object")

        issue_number = payload.get("issue_number")
        if isinstance(issue_number, bool) or not isinstance(issue_number, int) or issue_number < 1:
            raise ValueError(f"invalid issue_number: {issue_number!r}")

        session_id = str(payload.get("session_id", "") or "").strip()
        if not session_id:
            raise ValueError("session_id must be a non-empty string")

        pid = payload.get("pid")
        if isinstance(pid, bool) or not isinstance(pid, int):
            raise ValueError(f"invalid pid: {pid!r}")

        created_at = _parse_utc(str(payload.get("created_at", "") or ""))
        if created_at is None:
            raise ValueError(f"invalid created_at: {payload.get('created_at')!r}")

        raw_heartbeat = payload.get("last_heartbeat")
        last_heartbeat = None
        if raw_heartbeat not in (None, ""):
            last_heartbeat = _parse_utc(str(raw_heartbeat))
            if last_heartbeat is None:
                raise ValueError(f"invalid last_heartbeat: {raw_heartbeat!r}")

        return cls(
            issue_number=issue_number,
            session_id=session_id,
            pid=pid,
            hostname=str(payload.get("hostname", "") or ""),
            created_at=created_at,
            last_heartbeat=last_heartbeat,
            worker_id=_optional_text(payload.get("worker_id")),
            repo_name=_optional_text(payload.get("repo_name")),
        )


@dataclass(frozen=True)
class LockClassification:
    is_stale: bool
    locked_seconds: int
    heartbeat_age_seconds: int


@dataclass(frozen=True)
class LockStatus:
    """A lock record annotated with its read-time classification."""

    lock: TaskLock
    classification: LockClassification

    @property
    def issue_number(self) -> int:
        return self.lock.issue_number

    @property
    def is_stale(self) -> bool:
        return self.classification.is_stale

    def to_payload(self) -> dict[str, Any]:
        payload = self.lock.to_payload()
        payload["locked_seconds"] = self.classification.locked_seconds
        payload["heartbeat_age_seconds"] = self.classification.heartbeat_age_seconds
        payload["is_stale"] = self.classification.is_stale
        return payload


# ---------------------------------------------------------------------------
# Lifecycle outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Acquired:
    lock: TaskLock
    reacquired: bool = False
    took_over: TaskLock | None = None


@dataclass(frozen=True)
class AlreadyLocked:
    issue_number: int
    holder: TaskLock | None
    classification: LockClassification | None

    @property
    def is_stale(self) -> bool:
        return self.classification is not None and self.classification.is_stale


@dataclass(frozen=True)
class Renewed:
    lock: TaskLock


@dataclass(frozen=True)
class LockLost:
    issue_number: int
    holder: TaskLock | None = None


@dataclass(frozen=True)
class Released:
    issue_number: int


@dataclass(frozen=True)
class NotHeld:
    issue_number: int


AcquireOutcome = Acquired | AlreadyLocked
RenewOutcome = Renewed | LockLost
ReleaseOutcome = Released | NotHeld


@dataclass(frozen=True)
class UnlockResult:
    """Structured result of one operator unlock/list/cleanup request."""

    success: bool
    action: str          # "list" | "unlock" | "cleanup"
    outcome: str         # one of UNLOCK_OUTCOMES
    message: str
    released: int = 0
    locks: tuple[LockStatus, ...] = field(default_factory=tuple)
    issue_number: int | None = None

    def __post_init__(self) -> None:
        if self.action not in UNLOCK_ACTIONS:
            raise ValueError(f"unknown unlock action: {self.action!r}")
        if self.outcome not in UNLOCK_OUTCOMES:
            raise ValueError(f"unknown unlock outcome: {self.outcome!r}")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "action": self.action,
            "released": self.released,
            "locks": [status.to_payload() for status in self.locks],
            "message": self.message,
        }
        if self.issue_number is not None:
            payload["issue_number"] = self.issue_number
        return payload


@dataclass(frozen=True)
class LockPolicyConfig:
    timeout_minutes: int
    heartbeat_interval_seconds: int
