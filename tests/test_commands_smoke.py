from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import tasklock.commands as commands_module
from tasklock.models import TaskLock
from tasklock.store import LockStore


def _load_toml(path: Path) -> dict:
    payload: dict
    if sys.version_info >= (3, 11):
        import tomllib

        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    else:  # pragma: no cover
        import tomli  # type: ignore

        payload = tomli.loads(path.read_text(encoding="utf-8"))
    return payload


def _init(tmp_path: Path) -> Path:
    state_dir = tmp_path / ".tasklock"
    assert commands_module.main(["init", "--state-dir", str(state_dir)]) == 0
    return state_dir


def _seed_stale_lock(state_dir: Path, issue_number: int) -> None:
    old = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=5)
    LockStore(state_dir / "locks").create(
        TaskLock(
            issue_number=issue_number,
            session_id="crashed-session",
            pid=99999,
            hostname="remote-cluster",
            created_at=old,
            last_heartbeat=old,
        )
    )


def test_init_claim_renew_release_cycle(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    assert (state_dir / "config.yaml").is_file()
    assert (state_dir / "locks").is_dir()
    capsys.readouterr()

    assert commands_module.main(["claim", "7", "--state-dir", str(state_dir), "--session-id", "s1"]) == 0
    assert capsys.readouterr().out.strip() == "s1"

    assert commands_module.main(["claim", "7", "--state-dir", str(state_dir), "--session-id", "s2"]) == 1
    assert "locked by active session s1" in capsys.readouterr().err

    assert commands_module.main(["renew", "7", "--state-dir", str(state_dir), "--session-id", "s1"]) == 0
    assert commands_module.main(["renew", "7", "--state-dir", str(state_dir), "--session-id", "s2"]) == 1

    assert commands_module.main(["release", "7", "--state-dir", str(state_dir)]) == 0
    assert commands_module.main(["release", "7", "--state-dir", str(state_dir)]) == 0
    assert commands_module.main(["renew", "7", "--state-dir", str(state_dir), "--session-id", "s1"]) == 1

    log_text = (state_dir / "logs" / "tasklock.log").read_text(encoding="utf-8")
    assert "claim #7: acquired session=s1" in log_text
    assert "release #7" in log_text
    assert "renew #7: lock lost" in log_text


def test_unlock_requires_force_for_active_lock(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    assert commands_module.main(["claim", "3", "--state-dir", str(state_dir), "--session-id", "busy"]) == 0
    capsys.readouterr()

    assert commands_module.main(["unlock", "3", "--state-dir", str(state_dir)]) == 1
    assert "Use --force to override." in capsys.readouterr().err
    assert (state_dir / "locks" / "issue-3.lock").exists()

    assert commands_module.main(["unlock", "3", "--force", "--state-dir", str(state_dir)]) == 0
    assert not (state_dir / "locks" / "issue-3.lock").exists()

    assert commands_module.main(["unlock", "3", "--state-dir", str(state_dir)]) == 1
    assert "Issue #3 is not locked." in capsys.readouterr().err


def test_unlock_force_removes_unreadable_record(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    lock_path = state_dir / "locks" / "issue-5.lock"
    lock_path.write_text("", encoding="utf-8")
    capsys.readouterr()

    assert commands_module.main(["unlock", "5", "--state-dir", str(state_dir)]) == 1
    assert "unreadable lock record" in capsys.readouterr().err
    assert lock_path.exists()

    assert commands_module.main(["unlock", "5", "--force", "--state-dir", str(state_dir)]) == 0
    assert "Removed unreadable lock record for issue #5." in capsys.readouterr().out
    assert not lock_path.exists()
    log_text = (state_dir / "logs" / "tasklock.log").read_text(encoding="utf-8")
    assert "issues=#5" in log_text


def test_renew_requires_session_id(tmp_path: Path) -> None:
    state_dir = _init(tmp_path)

    with pytest.raises(SystemExit):
        commands_module.main(["renew", "7", "--state-dir", str(state_dir)])


def test_unlock_json_list_and_stale_cleanup(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    _seed_stale_lock(state_dir, 11)
    assert commands_module.main(["claim", "12", "--state-dir", str(state_dir), "--session-id", "live"]) == 0
    capsys.readouterr()

    assert commands_module.main(["unlock", "--json", "--state-dir", str(state_dir)]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed["action"] == "list"
    assert listed["success"] is True
    assert listed["released"] == 0
    assert [(entry["issue_number"], entry["is_stale"]) for entry in listed["locks"]] == [(11, True), (12, False)]

    assert commands_module.main(["unlock", "--stale", "--json", "--state-dir", str(state_dir)]) == 0
    cleaned = json.loads(capsys.readouterr().out)
    assert cleaned["action"] == "cleanup"
    assert cleaned["released"] == 1
    assert sorted(path.name for path in (state_dir / "locks").iterdir()) == ["issue-12.lock"]


def test_unlock_all_and_timeout_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    _seed_stale_lock(state_dir, 1)
    assert commands_module.main(["claim", "2", "--state-dir", str(state_dir), "--session-id", "live"]) == 0

    assert commands_module.main(["unlock", "--all", "--state-dir", str(state_dir)]) == 0
    assert sorted(path.name for path in (state_dir / "locks").iterdir()) == ["issue-2.lock"]

    assert commands_module.main(["unlock", "--all", "--state-dir", str(state_dir)]) == 1
    assert commands_module.main(["unlock", "--all", "--force", "--state-dir", str(state_dir)]) == 0
    assert list((state_dir / "locks").iterdir()) == []

    _seed_stale_lock(state_dir, 5)
    capsys.readouterr()
    assert (
        commands_module.main(["unlock", "--json", "--timeout-minutes", "600", "--state-dir", str(state_dir)])
        == 0
    )
    assert json.loads(capsys.readouterr().out)["locks"][0]["is_stale"] is False


def test_claim_take_over_stale(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    _seed_stale_lock(state_dir, 4)
    capsys.readouterr()

    assert commands_module.main(["claim", "4", "--state-dir", str(state_dir), "--session-id", "new"]) == 1
    assert "--take-over-stale" in capsys.readouterr().err

    assert (
        commands_module.main(
            ["claim", "4", "--take-over-stale", "--json", "--state-dir", str(state_dir), "--session-id", "new"]
        )
        == 0
    )
    payload = json.loads(capsys.readouterr().out)
    assert payload["acquired"] is True
    assert payload["lock"]["session_id"] == "new"


def test_status_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    state_dir = _init(tmp_path)
    capsys.readouterr()
    assert commands_module.main(["status", "--state-dir", str(state_dir)]) == 0
    assert "task locks: none" in capsys.readouterr().out

    _seed_stale_lock(state_dir, 9)
    assert commands_module.main(["status", "--json", "--state-dir", str(state_dir)]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["stale"] == 1
    assert payload["active"] == 0
    assert payload["timeout_minutes"] == 120


def test_unlock_without_state_dir_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert commands_module.main(["unlock", "--state-dir", str(tmp_path / "missing")]) == 1
    assert "state directory not found" in capsys.readouterr().err


def test_storage_failure_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    assert commands_module.main(["claim", "1", "--state-dir", str(blocker)]) == 1
    assert "tasklock claim: ERROR" in capsys.readouterr().err


def test_no_command_prints_help() -> None:
    assert commands_module.main([]) == 2


def test_pyproject_declares_console_script() -> None:
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    pyproject = _load_toml(pyproject_path)

    assert pyproject["project"]["scripts"]["tasklock"] == "tasklock.commands:main"
    assert any(dep.startswith("PyYAML") for dep in pyproject["project"]["dependencies"])
