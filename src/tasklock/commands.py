from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from tasklock.config import _load_lock_policy, _write_default_config
from tasklock.constants import DEFAULT_STATE_DIR, LOCKS_DIRECTORY, STATUS_PREVIEW_LIMIT
from tasklock.manager import TaskLockManager
from tasklock.models import (
    Acquired,
    LockIdentity,
    LockStatus,
    LockStoreError,
    Released,
    Renewed,
    UnlockResult,
)
from tasklock.unlock import cleanup_stale, list_locks, unlock_all, unlock_issue
from tasklock.utils import _append_log, _format_duration, _format_utc


def _resolve_state_dir(args: argparse.Namespace) -> Path:
    return Path(args.state_dir).expanduser().resolve()


def _open_manager(args: argparse.Namespace, state_dir: Path) -> TaskLockManager:
    return TaskLockManager.for_state_dir(
        state_dir,
        timeout_minutes=getattr(args, "timeout_minutes", None),
    )


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def _format_lock_info(status: LockStatus) -> str:
    lock = status.lock
    stale_indicator = " (stale)" if status.is_stale else ""
    lines = [
        f"  Issue #{lock.issue_number}{stale_indicator}",
        f"    Session:   {lock.session_id}",
        f"    PID:       {lock.pid}",
        f"    Hostname:  {lock.hostname}",
        f"    Locked:    {_format_duration(status.classification.locked_seconds)} ago",
        f"    Heartbeat: {_format_duration(status.classification.heartbeat_age_seconds)} ago",
    ]
    if lock.worker_id is not None:
        lines.append(f"    Worker:    {lock.worker_id}")
    if lock.repo_name is not None:
        lines.append(f"    Repo:      {lock.repo_name}")
    return "\n".join(lines)


def _print_unlock_result(result: UnlockResult) -> None:
    if result.action == "list" and result.locks:
        active = [status for status in result.locks if not status.is_stale]
        stale = [status for status in result.locks if status.is_stale]
        print("TASK LOCKS")
        if active:
            print(f"Active Locks ({len(active)})")
            for status in active:
                print(_format_lock_info(status))
            print("")
        if stale:
            print(f"Stale Locks ({len(stale)})")
            for status in stale:
                print(_format_lock_info(status))
            print("")
            print("Run 'tasklock unlock --stale' to clean up stale locks.")
    elif result.success and result.released and result.locks:
        print("Released locks:")
        for status in result.locks:
            print(f"  - Issue #{status.issue_number}")
    stream = sys.stdout if result.success else sys.stderr
    print(result.message, file=stream)


# ---------------------------------------------------------------------------
# Operator commands
# ---------------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    config_path = _write_default_config(state_dir)
    (state_dir / LOCKS_DIRECTORY).mkdir(parents=True, exist_ok=True)
    policy = _load_lock_policy(state_dir)
    _append_log(state_dir, f"init: timeout_minutes={policy.timeout_minutes}")
    print(f"tasklock init: ready at {state_dir}")
    print(f"  config: {config_path}")
    print(f"  timeout_minutes: {policy.timeout_minutes}")
    print(f"  heartbeat_interval_seconds: {policy.heartbeat_interval_seconds}")
    return 0


def _cmd_unlock(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    if not state_dir.is_dir():
        if args.json:
            _print_json({"success": False, "error": f"state directory not found: {state_dir}"})
        else:
            print(f"tasklock unlock: ERROR state directory not found: {state_dir}", file=sys.stderr)
            print("Run `tasklock init` first.", file=sys.stderr)
        return 1

    manager = _open_manager(args, state_dir)
    if args.stale:
        result = cleanup_stale(manager)
    elif args.all:
        result = unlock_all(manager, force=args.force)
    elif args.issue is not None:
        result = unlock_issue(manager, args.issue, force=args.force)
    else:
        result = list_locks(manager)

    if result.released:
        issue_numbers = [status.issue_number for status in result.locks] or [result.issue_number]
        released = ", ".join(f"#{number}" for number in issue_numbers)
        _append_log(
            state_dir,
            f"unlock {result.action}: released={result.released} force={args.force} issues={released}",
        )

    if args.json:
        _print_json(result.to_payload())
    else:
        _print_unlock_result(result)
    return 0 if result.success else 1


def _cmd_status(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    manager = _open_manager(args, state_dir)
    locks = manager.list_locks()
    stale = [status for status in locks if status.is_stale]

    if args.json:
        _print_json(
            {
                "timeout_minutes": manager.timeout_minutes,
                "active": len(locks) - len(stale),
                "stale": len(stale),
                "locks": [status.to_payload() for status in locks],
            }
        )
        return 0

    if not locks:
        print("task locks: none")
        return 0
    print(f"task locks: {len(locks) - len(stale)} active, {len(stale)} stale")
    for status in locks[:STATUS_PREVIEW_LIMIT]:
        suffix = " (stale)" if status.is_stale else ""
        age = _format_duration(status.classification.locked_seconds)
        print(f"  - Issue #{status.issue_number}: locked {age} ago{suffix}")
    if len(locks) > STATUS_PREVIEW_LIMIT:
        print(f"  ... and {len(locks) - STATUS_PREVIEW_LIMIT} more")
    if stale:
        print("Run 'tasklock unlock --stale' to clean up stale locks.")
    return 0


# ---------------------------------------------------------------------------
# Worker commands
# ---------------------------------------------------------------------------


def _cmd_claim(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    manager = _open_manager(args, state_dir)
    identity = LockIdentity.for_current_process(
        session_id=args.session_id,
        worker_id=args.worker_id,
        repo_name=args.repo_name,
    )
    outcome = manager.acquire(args.issue, identity, take_over_stale=args.take_over_stale)

    if isinstance(outcome, Acquired):
        if outcome.took_over is not None:
            _append_log(
                state_dir,
                f"claim #{args.issue}: took over stale lock from session {outcome.took_over.session_id}",
            )
        _append_log(
            state_dir,
            f"claim #{args.issue}: acquired session={identity.session_id} reacquired={outcome.reacquired}",
        )
        if args.json:
            _print_json({"acquired": True, "reacquired": outcome.reacquired, "lock": outcome.lock.to_payload()})
        else:
            print(identity.session_id)
        return 0

    holder = outcome.holder
    if holder is None:
        detail = "holder record is unreadable"
    else:
        state = "stale" if outcome.is_stale else "active"
        detail = (
            f"{state} session {holder.session_id} on {holder.hostname} "
            f"(pid={holder.pid}, last heartbeat {_format_utc(holder.last_heartbeat or holder.created_at)})"
        )
    if args.json:
        _print_json(
            {
                "acquired": False,
                "is_stale": outcome.is_stale,
                "holder": holder.to_payload() if holder is not None else None,
            }
        )
    else:
        print(f"tasklock claim: issue #{args.issue} is locked by {detail}", file=sys.stderr)
        if outcome.is_stale:
            print("Use --take-over-stale to claim it.", file=sys.stderr)
    return 1


def _cmd_renew(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    manager = _open_manager(args, state_dir)
    outcome = manager.renew(args.issue, session_id=args.session_id)
    if isinstance(outcome, Renewed):
        print(f"tasklock renew: issue #{args.issue} heartbeat {_format_utc(outcome.lock.last_heartbeat)}")
        return 0
    _append_log(state_dir, f"renew #{args.issue}: lock lost")
    print(f"tasklock renew: ERROR lock for issue #{args.issue} was lost; stop processing it", file=sys.stderr)
    return 1


def _cmd_release(args: argparse.Namespace) -> int:
    state_dir = _resolve_state_dir(args)
    manager = _open_manager(args, state_dir)
    outcome = manager.release(args.issue)
    if isinstance(outcome, Released):
        _append_log(state_dir, f"release #{args.issue}")
        print(f"tasklock release: released issue #{args.issue}")
    else:
        print(f"tasklock release: issue #{args.issue} was not locked")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{raw}'") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{raw}'")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasklock",
        description="Claim work items and manage their task locks",
    )
    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--state-dir",
        default=DEFAULT_STATE_DIR,
        help=f"Directory holding config.yaml and locks/ (default: {DEFAULT_STATE_DIR})",
    )

    init = subparsers.add_parser("init", parents=[common], help="Create the state directory and default config")
    init.set_defaults(handler=_cmd_init)

    unlock = subparsers.add_parser("unlock", parents=[common], help="List or release task locks")
    unlock.add_argument("issue", nargs="?", type=_positive_int, help="Issue number to unlock")
    scope = unlock.add_mutually_exclusive_group()
    scope.add_argument("--all", action="store_true", help="Release all stale locks (all locks with --force)")
    scope.add_argument("--stale", action="store_true", help="Remove stale locks only")
    unlock.add_argument("--force", action="store_true", help="Release active locks too")
    unlock.add_argument("--json", action="store_true", help="Print a JSON result document")
    unlock.add_argument(
        "--timeout-minutes",
        type=_positive_int,
        default=None,
        help="Override the staleness timeout from config.yaml",
    )
    unlock.set_defaults(handler=_cmd_unlock)

    status = subparsers.add_parser("status", parents=[common], help="Summarize active and stale locks")
    status.add_argument("--json", action="store_true", help="Print JSON")
    status.add_argument("--timeout-minutes", type=_positive_int, default=None)
    status.set_defaults(handler=_cmd_status)

    claim = subparsers.add_parser("claim", parents=[common], help="Acquire the lock for an issue")
    claim.add_argument("issue", type=_positive_int)
    claim.add_argument("--session-id", default=None, help="Session id to record (generated when omitted)")
    claim.add_argument("--worker-id", default=None)
    claim.add_argument("--repo-name", default=None)
    claim.add_argument(
        "--take-over-stale",
        action="store_true",
        help="Evict a stale holder and claim the issue",
    )
    claim.add_argument("--json", action="store_true", help="Print JSON")
    claim.set_defaults(handler=_cmd_claim)

    renew = subparsers.add_parser("renew", parents=[common], help="Send one heartbeat for a held lock")
    renew.add_argument("issue", type=_positive_int)
    renew.add_argument(
        "--session-id", required=True, help="Session that holds the lock; any other owner means it was lost"
    )
    renew.set_defaults(handler=_cmd_renew)

    release = subparsers.add_parser("release", parents=[common], help="Release a lock after processing")
    release.add_argument("issue", type=_positive_int)
    release.set_defaults(handler=_cmd_release)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return int(handler(args))
    except LockStoreError as exc:
        print(f"tasklock {args.command}: ERROR {exc}", file=sys.stderr)
        return 1
