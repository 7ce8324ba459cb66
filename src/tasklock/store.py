"""Durable lock records: one JSON file per work item in a shared directory.

Every call re-reads the directory so that writes made by other processes,
possibly on other hosts sharing the filesystem, are always observed. A new
holder's record only comes into existence through an exclusive create, so
two writers can never both believe they claimed the same item. Renewals
replace an existing record in one rename and never leave the item unlocked.
"""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path

from tasklock.constants import LOCK_FILE_PATTERN, LOCK_FILE_PREFIX, LOCK_FILE_SUFFIX
from tasklock.models import CorruptLockError, LockStoreError, TaskLock


def _render_payload(lock: TaskLock) -> str:
    return json.dumps(lock.to_payload(), indent=2) + "\n"


def _same_holder(left: TaskLock, right: TaskLock) -> bool:
    return (
        left.issue_number == right.issue_number
        and left.session_id == right.session_id
        and left.created_at == right.created_at
    )


class LockStore:
    def __init__(self, locks_dir: Path) -> None:
        self.locks_dir = Path(locks_dir)

    def path_for(self, issue_number: int) -> Path:
        return self.locks_dir / f"{LOCK_FILE_PREFIX}{issue_number}{LOCK_FILE_SUFFIX}"

    def _ensure_dir(self) -> None:
        try:
            self.locks_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LockStoreError(f"cannot create lock directory {self.locks_dir}: {exc}") from exc

    def _place_exclusive(self, lock_path: Path, rendered: str) -> bool:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockStoreError(f"failed to create lock at {lock_path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
        except OSError as exc:
            lock_path.unlink(missing_ok=True)
            raise LockStoreError(f"failed to write lock at {lock_path}: {exc}") from exc
        return True

    def _move_aside(self, lock_path: Path) -> Path | None:
        aside_path = lock_path.with_name(f".{lock_path.name}.{uuid.uuid4().hex[:8]}.aside")
        try:
            os.replace(lock_path, aside_path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockStoreError(f"failed to move lock at {lock_path}: {exc}") from exc
        return aside_path

    def _restore(self, aside_path: Path, lock_path: Path) -> None:
        try:
            rendered = aside_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise LockStoreError(f"failed to restore lock at {lock_path} from {aside_path}: {exc}") from exc
        # False means a new holder claimed the item meanwhile; its record wins.
        self._place_exclusive(lock_path, rendered)
        aside_path.unlink(missing_ok=True)

    def _replace_record(self, lock_path: Path, rendered: str) -> None:
        temp_path = lock_path.with_name(f".{lock_path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            temp_path.write_text(rendered, encoding="utf-8")
            os.replace(temp_path, lock_path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise LockStoreError(f"failed to write lock at {lock_path}: {exc}") from exc

    def _read_aside(self, aside_path: Path) -> TaskLock | None:
        try:
            return self._read_path(aside_path)
        except CorruptLockError:
            return None

    # -- create / read ------------------------------------------------------

    def create(self, lock: TaskLock) -> bool:
        """Write ``lock`` only if no record exists; False when one already does."""
        self._ensure_dir()
        return self._place_exclusive(self.path_for(lock.issue_number), _render_payload(lock))

    def _read_path(self, lock_path: Path) -> TaskLock | None:
        try:
            text = lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockStoreError(f"failed to read lock at {lock_path}: {exc}") from exc
        try:
            return TaskLock.from_payload(json.loads(text))
        except (json.JSONDecodeError, ValueError) as exc:
            raise CorruptLockError(f"lock file is not a valid lock record: {lock_path}: {exc}") from exc

    def read(self, issue_number: int) -> TaskLock | None:
        return self._read_path(self.path_for(issue_number))

    # -- mutate -------------------------------------------------------------

    def update(self, lock: TaskLock) -> bool:
        """Rewrite the record held by the same session; False when it is gone.

        The new content is written to a temporary file and renamed over the
        record, so the record never disappears while it is being renewed.
        """
        lock_path = self.path_for(lock.issue_number)
        try:
            current = self._read_path(lock_path)
        except CorruptLockError:
            return False
        if current is None or not _same_holder(current, lock):
            return False
        self._replace_record(lock_path, _render_payload(lock))
        return True

    def delete(self, issue_number: int) -> bool:
        lock_path = self.path_for(issue_number)
        try:
            lock_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise LockStoreError(f"failed to remove lock at {lock_path}: {exc}") from exc
        return True

    def evict(self, expected: TaskLock) -> bool:
        """Remove the record only if it still equals ``expected``.

        Used for staleness-gated removal: a record renewed after the caller
        inspected it is put back untouched. The moved-aside copy is only
        discarded once the record is either removed or restored.
        """
        lock_path = self.path_for(expected.issue_number)
        aside_path = self._move_aside(lock_path)
        if aside_path is None:
            return False
        if self._read_aside(aside_path) == expected:
            aside_path.unlink(missing_ok=True)
            return True
        self._restore(aside_path, lock_path)
        return False

    # -- enumerate ----------------------------------------------------------

    def issue_numbers(self) -> list[int]:
        try:
            names = os.listdir(self.locks_dir)
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise LockStoreError(f"failed to list lock directory {self.locks_dir}: {exc}") from exc
        numbers: list[int] = []
        for name in names:
            match = LOCK_FILE_PATTERN.match(name)
            if match is not None:
                numbers.append(int(match.group("issue")))
        return sorted(numbers)

    def list_all(self) -> list[TaskLock]:
        locks: list[TaskLock] = []
        for issue_number in self.issue_numbers():
            try:
                lock = self.read(issue_number)
            except CorruptLockError:
                continue
            if lock is not None:
                locks.append(lock)
        return locks
