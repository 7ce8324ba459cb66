"""Operator unlock policy: list, release one, release all, and stale cleanup.

These functions only compose ``TaskLockManager`` operations and decide
whether a release needs an explicit ``force`` override. Rendering and exit
status belong to the command layer.
"""

from __future__ import annotations

from tasklock.manager import TaskLockManager
from tasklock.models import CorruptLockError, UnlockResult


def list_locks(manager: TaskLockManager) -> UnlockResult:
    locks = tuple(manager.list_locks())
    if not locks:
        return UnlockResult(
            success=True,
            action="list",
            outcome="listed",
            message="No task locks found.",
        )
    stale_count = sum(1 for status in locks if status.is_stale)
    return UnlockResult(
        success=True,
        action="list",
        outcome="listed",
        locks=locks,
        message=(
            f"Found {len(locks)} task lock(s): "
            f"{len(locks) - stale_count} active, {stale_count} stale."
        ),
    )


def _unlock_unreadable(manager: TaskLockManager, issue_number: int, *, force: bool) -> UnlockResult:
    if not force:
        return UnlockResult(
            success=False,
            action="unlock",
            outcome="unreadable",
            issue_number=issue_number,
            message=(
                f"Issue #{issue_number} has an unreadable lock record. "
                "Use --force to remove it."
            ),
        )
    if manager.force_release(issue_number):
        return UnlockResult(
            success=True,
            action="unlock",
            outcome="released",
            issue_number=issue_number,
            released=1,
            message=f"Removed unreadable lock record for issue #{issue_number}.",
        )
    return UnlockResult(
        success=False,
        action="unlock",
        outcome="release_failed",
        issue_number=issue_number,
        message=f"Failed to release lock for issue #{issue_number}: it was removed concurrently.",
    )


def unlock_issue(manager: TaskLockManager, issue_number: int, *, force: bool = False) -> UnlockResult:
    try:
        status = manager.inspect(issue_number)
    except CorruptLockError:
        return _unlock_unreadable(manager, issue_number, force=force)
    if status is None:
        return UnlockResult(
            success=False,
            action="unlock",
            outcome="not_locked",
            issue_number=issue_number,
            message=f"Issue #{issue_number} is not locked.",
        )

    if not status.is_stale and not force:
        return UnlockResult(
            success=False,
            action="unlock",
            outcome="override_required",
            issue_number=issue_number,
            locks=(status,),
            message=(
                f"Issue #{issue_number} is locked by an active session "
                f"({status.lock.session_id}). Use --force to override."
            ),
        )

    if manager.force_release(issue_number):
        return UnlockResult(
            success=True,
            action="unlock",
            outcome="released",
            issue_number=issue_number,
            released=1,
            locks=(status,),
            message=f"Released lock for issue #{issue_number}.",
        )
    return UnlockResult(
        success=False,
        action="unlock",
        outcome="release_failed",
        issue_number=issue_number,
        message=f"Failed to release lock for issue #{issue_number}: it was removed concurrently.",
    )


def unlock_all(manager: TaskLockManager, *, force: bool = False) -> UnlockResult:
    locks = tuple(manager.list_locks())
    if not locks:
        return UnlockResult(
            success=True,
            action="unlock",
            outcome="nothing_to_release",
            message="No locks to release.",
        )

    targets = locks if force else tuple(status for status in locks if status.is_stale)
    if not targets:
        return UnlockResult(
            success=False,
            action="unlock",
            outcome="active_only",
            locks=locks,
            message=f"Found {len(locks)} active lock(s). Use --force to release active locks.",
        )

    released = tuple(status for status in targets if manager.force_release(status.issue_number))
    kept_active = len(locks) - len(targets)
    message = f"Released {len(released)} lock(s)."
    if kept_active:
        message = f"{message} Left {kept_active} active lock(s) untouched."
    return UnlockResult(
        success=True,
        action="unlock",
        outcome="released",
        released=len(released),
        locks=released,
        message=message,
    )


def cleanup_stale(manager: TaskLockManager) -> UnlockResult:
    stale = manager.find_stale()
    if not stale:
        return UnlockResult(
            success=True,
            action="cleanup",
            outcome="nothing_to_release",
            message="No stale locks found.",
        )
    removed = tuple(manager.evict_stale(stale))
    return UnlockResult(
        success=True,
        action="cleanup",
        outcome="released",
        released=len(removed),
        locks=removed,
        message=f"Removed {len(removed)} stale lock(s).",
    )
