from __future__ import annotations

from pathlib import Path
import importlib.util
import json

import pytest


def load_diag():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "sherpa_diag.py"
    spec = importlib.util.spec_from_file_location("sherpa_diag_test_module", module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def seed_home(home: Path) -> None:
    home.mkdir(parents=True, exist_ok=True)
    (home / "workflow-state.json").write_text(
        json.dumps(
            {
                "workflow_id": "tdd",
                "phase_index": 1,
                "phase_progress": {"Red": ["wrote test"]},
                "last_updated": "2025-09-01T12:00:00+00:00",
            }
        ),
        encoding="utf-8",
    )
    (home / "progress-tracker.json").write_text(
        json.dumps(
            {
                "stats": {"total_workflows_completed": 2, "total_steps_completed": 9, "current_streak": 3},
                "milestones": [
                    {"id": "first_workflow_completion", "achieved": True},
                    {"id": "five_workflows_completed", "achieved": False},
                ],
            }
        ),
        encoding="utf-8",
    )
    (home / "user-profile.json").write_text(
        json.dumps({"user_id": "user_cli", "preferences": {"celebration_level": "minimal"}}),
        encoding="utf-8",
    )


def test_status_json_reports_all_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    seed_home(tmp_path)

    diag.main(["--home", str(tmp_path), "status", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["workflow_state"]["state"]["workflow_id"] == "tdd"
    assert payload["workflow_state"]["error"] is None
    assert payload["progress"]["total_workflows"] == 2
    assert payload["progress"]["longest_streak"] == 3
    assert payload["progress"]["milestones_achieved"] == ["first_workflow_completion"]
    assert payload["profile"] == {"present": True, "error": None}


def test_status_text_for_empty_home(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()

    diag.main(["--home", str(tmp_path), "status"])

    out = capsys.readouterr().out
    assert "workflow: none (phase -)" in out
    assert "progress: 0 workflows, 0 steps, streak 0" in out
    assert "warning" not in out
    assert list(tmp_path.iterdir()) == []


def test_status_warns_about_corrupt_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    (tmp_path / "progress-tracker.json").write_text("{oops", encoding="utf-8")
    (tmp_path / "workflow-state.json").write_text(json.dumps({"phase_index": "x"}), encoding="utf-8")

    diag.main(["--home", str(tmp_path), "status"])

    out = capsys.readouterr().out
    assert "warning: progress unreadable" in out
    assert "warning: workflow state unreadable: invalid" in out


def test_status_warns_about_deeply_nested_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    (tmp_path / "workflow-state.json").write_text("[" * 200000 + "]" * 200000, encoding="utf-8")

    diag.main(["--home", str(tmp_path), "status"])

    out = capsys.readouterr().out
    assert "workflow: none" in out
    assert "warning: workflow state unreadable: workflow-state.json: JSON nested too deeply" in out


def test_profile_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()

    diag.main(["--home", str(tmp_path), "profile"])
    assert capsys.readouterr().out.strip() == "No user profile stored yet."

    seed_home(tmp_path)
    diag.main(["--home", str(tmp_path), "profile"])
    profile = json.loads(capsys.readouterr().out)
    assert profile["user_id"] == "user_cli"
    assert profile["preferences"]["celebration_level"] == "minimal"
    assert profile["behavior_metrics"]["total_sessions"] == 0


def test_profile_command_fails_on_unreadable_profile(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    (tmp_path / "user-profile.json").write_text("not json", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["--home", str(tmp_path), "profile"])

    assert excinfo.value.code == 1
    assert "Profile unreadable" in capsys.readouterr().out


def test_reset_keeps_profile_by_default(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    seed_home(tmp_path)

    diag.main(["--home", str(tmp_path), "reset"])

    assert "Cleared workflow state and progress" in capsys.readouterr().out
    assert not (tmp_path / "workflow-state.json").exists()
    stored = json.loads((tmp_path / "progress-tracker.json").read_text(encoding="utf-8"))
    assert stored["stats"]["total_workflows_completed"] == 0
    assert json.loads((tmp_path / "user-profile.json").read_text(encoding="utf-8"))["user_id"] == "user_cli"


def test_reset_can_include_profile(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()
    seed_home(tmp_path)

    diag.main(["--home", str(tmp_path), "reset", "--include-profile"])

    assert "and learning profile" in capsys.readouterr().out
    assert not (tmp_path / "user-profile.json").exists()


def test_default_home_comes_from_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    diag = load_diag()
    monkeypatch.setenv("SHERPA_HOME", str(tmp_path))

    diag.main(["status", "--json"])

    assert json.loads(capsys.readouterr().out)["home"] == str(tmp_path)


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    diag = load_diag()

    diag.main([])

    assert "Sherpa MCP diagnostics" in capsys.readouterr().out
