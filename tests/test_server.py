from __future__ import annotations

from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import json
import logging
import textwrap

import pytest

from sherpa_mcp import __version__
from sherpa_mcp import server as server_module
from sherpa_mcp.config import SherpaSettings
from sherpa_mcp.workflows import COMPLETION_RULES


class StubFastMCP:
    def __init__(self, *args, **kwargs) -> None:
        self.kwargs = kwargs
        self.tools: dict[str, object] = {}
        self.resources: dict[str, object] = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs.get("name", fn.__name__)] = fn
            return fn

        return decorator

    def resource(self, uri, **kwargs):
        def decorator(fn):
            self.resources[uri] = fn
            return fn

        return decorator


def make_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> SherpaSettings:
    workflows = tmp_path / "workflows"
    workflows.mkdir()
    (workflows / "tdd.yaml").write_text(
        textwrap.dedent(
            """
            name: Test-Driven Development
            description: Tests first
            phases:
              - name: Red
                suggestions: [write a failing test]
              - name: Green
                suggestions: [make it pass]
            """
        ).strip(),
        encoding="utf-8",
    )
    monkeypatch.setenv("SHERPA_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("SHERPA_WORKFLOW_PATHS", str(workflows))
    monkeypatch.setenv("SHERPA_RETRY_BASE_DELAY", "0")
    return SherpaSettings()


def test_create_server_wires_tools_and_resources(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)
    settings = make_settings(tmp_path, monkeypatch)

    server = server_module.create_server(settings)

    assert server.kwargs["name"] == "Sherpa MCP"
    assert server.kwargs["version"] == __version__
    assert set(server.tools) == {"guide", "approach", "flow"}
    assert set(server.resources) == {"resource://sherpa/status", "resource://sherpa/guide"}
    assert server.controller.session.workflow_id == "tdd"
    assert server.load_result.workflow_state is None
    assert server.resources["resource://sherpa/guide"]() == server_module.GUIDE_TEXT


def test_status_payload_reports_runtime_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)
    settings = make_settings(tmp_path, monkeypatch)
    server = server_module.create_server(settings)

    payload = json.loads(server.resources["resource://sherpa/status"]())

    assert payload["server_version"] == __version__
    assert payload["log_level"] == "INFO"
    assert payload["home"] == str(tmp_path / "home")
    assert payload["workflows"] == {"count": 1, "keys": ["tdd"]}
    assert payload["loaded"] == {"workflow_state": False, "progress": True, "learning": True}
    assert payload["workflow"]["current_workflow"] == "tdd"
    assert payload["workflow"]["phase_name"] == "Red"
    assert payload["progress"]["next_milestone"] == "First Workflow Mastery"
    assert payload["learning"]["flow_active"] is False
    assert server.status_payload()["workflows"]["count"] == 1


def test_create_server_accepts_prebuilt_controller(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)
    settings = make_settings(tmp_path, monkeypatch)
    controller = server_module.build_controller(settings)

    server = server_module.create_server(settings, controller=controller)

    assert server.controller is controller
    assert (tmp_path / "home" / "user-profile.json").exists()


def test_invalid_completion_rules_fall_back(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    rules = tmp_path / "rules.yaml"
    rules.write_text("version: broken\nrules: nope\n", encoding="utf-8")
    monkeypatch.setenv("SHERPA_COMPLETION_RULES", str(rules))
    settings = SherpaSettings()

    with caplog.at_level(logging.WARNING):
        detector = server_module._completion_detector(settings)

    assert detector.rules is COMPLETION_RULES
    assert "Using built-in completion rules" in caplog.text


def test_configure_logging_adds_rotating_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

    server_module.configure_logging("DEBUG", tmp_path / "logs")

    handlers = captured["handlers"]
    try:
        assert captured["level"] == logging.DEBUG
        assert captured["format"] == server_module.LOG_FORMAT
        rotating = [h for h in handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].backupCount == 7
        assert Path(rotating[0].baseFilename) == tmp_path / "logs" / server_module.LOG_FILENAME
    finally:
        for handler in handlers:
            if isinstance(handler, TimedRotatingFileHandler):
                handler.close()
