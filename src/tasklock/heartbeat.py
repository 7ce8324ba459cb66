"""Background heartbeat for a held lock."""

from __future__ import annotations

import threading
from collections.abc import Callable

from tasklock.manager import TaskLockManager
from tasklock.models import LockLost, LockLostError, LockStoreError


class LockHeartbeat:
    """Renew one lock on a fixed interval until stopped or the lock is lost.

    The holder should poll ``lost`` (or call ``check()``) between units of
    work and abandon the item once it turns true.

        with LockHeartbeat(manager, 42, session_id=identity.session_id) as beat:
            for step in steps:
                beat.check()
                step()
    """

    def __init__(
        self,
        manager: TaskLockManager,
        issue_number: int,
        *,
        session_id: str,
        interval_seconds: float | None = None,
        on_lost: Callable[[int], None] | None = None,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = manager.heartbeat_interval_seconds
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.manager = manager
        self.issue_number = issue_number
        self.session_id = session_id
        self.interval_seconds = interval_seconds
        self.on_lost = on_lost
        self.renewals = 0
        self.last_error: LockStoreError | None = None
        self._stop = threading.Event()
        self._lost = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def lost(self) -> bool:
        return self._lost.is_set()

    def check(self) -> None:
        if self._lost.is_set():
            raise LockLostError(f"lock for issue #{self.issue_number} was lost")

    def beat(self) -> bool:
        """Renew once; False when the lock has been lost."""
        outcome = self.manager.renew(self.issue_number, session_id=self.session_id)
        if isinstance(outcome, LockLost):
            self._lost.set()
            if self.on_lost is not None:
                self.on_lost(self.issue_number)
            return False
        self.renewals += 1
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                if not self.beat():
                    return
            except LockStoreError as exc:
                # retried on the next tick
                self.last_error = exc

    def start(self) -> LockHeartbeat:
        if self._thread is not None:
            raise RuntimeError("heartbeat already started")
        self._thread = threading.Thread(
            target=self._run,
            name=f"tasklock-heartbeat-{self.issue_number}",
            daemon=True,
        )
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def __enter__(self) -> LockHeartbeat:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
