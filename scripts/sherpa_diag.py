"""Sherpa MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from sherpa_mcp.behavior import AdaptiveLearningEngine, ProgressTracker
from sherpa_mcp.behavior.learning import PROFILE_FILENAME
from sherpa_mcp.behavior.progress import PROGRESS_FILENAME
from sherpa_mcp.config import SherpaSettings
from sherpa_mcp.state import StateCoordinator, WorkflowStateManager
from sherpa_mcp.state.workflow_state import STATE_FILENAME
from sherpa_mcp.storage import JsonFile, WorkflowState
from sherpa_mcp.storage.sanitize import sanitize_profile, sanitize_stats


def resolve_home(args: argparse.Namespace) -> Path:
    if getattr(args, "home", None):
        return Path(args.home).expanduser()
    return SherpaSettings().home.expanduser()


def read_document(path: Path) -> tuple[Any, str | None]:
    """Return ``(document, error)`` without modifying anything on disk."""

    try:
        return JsonFile(path).read_sync(), None
    except FileNotFoundError:
        return None, "missing"
    except (OSError, ValueError) as exc:
        return None, str(exc)


def cmd_status(args: argparse.Namespace) -> None:
    home = resolve_home(args)
    now = datetime.now(timezone.utc)

    state_doc, state_error = read_document(home / STATE_FILENAME)
    workflow: dict[str, Any] | None = None
    if state_doc is not None:
        try:
            state = WorkflowState.model_validate(state_doc)
            workflow = state.model_dump(mode="json")
        except ValidationError as exc:
            state_error = f"invalid: {exc.error_count()} errors"

    progress_doc, progress_error = read_document(home / PROGRESS_FILENAME)
    if not isinstance(progress_doc, dict):
        progress_doc = {}
    stats = sanitize_stats(progress_doc.get("stats"), now)
    stored_milestones = progress_doc.get("milestones")
    milestones = [
        item.get("id")
        for item in (stored_milestones if isinstance(stored_milestones, list) else [])
        if isinstance(item, dict) and item.get("achieved") is True
    ]

    profile_doc, profile_error = read_document(home / PROFILE_FILENAME)

    report = {
        "home": str(home),
        "workflow_state": {"state": workflow, "error": state_error},
        "progress": {
            "total_workflows": stats.total_workflows_completed,
            "total_steps": stats.total_steps_completed,
            "current_streak": stats.current_streak,
            "longest_streak": stats.longest_streak,
            "milestones_achieved": milestones,
            "error": progress_error,
        },
        "profile": {"present": profile_doc is not None, "error": profile_error},
    }

    if args.json:
        print(json.dumps(report, indent=2))
        return

    current = workflow["workflow_id"] if workflow else "none"
    phase = workflow["phase_index"] if workflow else "-"
    print(f"home: {home}")
    print(f"workflow: {current} (phase {phase})")
    print(
        f"progress: {stats.total_workflows_completed} workflows, "
        f"{stats.total_steps_completed} steps, streak {stats.current_streak}"
    )
    for name, error in (("workflow state", state_error), ("progress", progress_error), ("profile", profile_error)):
        if error and error != "missing":
            print(f"warning: {name} unreadable: {error}")


def cmd_profile(args: argparse.Namespace) -> None:
    home = resolve_home(args)
    document, error = read_document(home / PROFILE_FILENAME)
    if error == "missing":
        print("No user profile stored yet.")
        return
    if error is not None:
        print(f"Profile unreadable, defaults would be used: {error}")
        raise SystemExit(1)
    profile = sanitize_profile(document, datetime.now(timezone.utc))
    print(json.dumps(profile.model_dump(mode="json"), indent=2))


async def _reset(home: Path, include_profile: bool) -> None:
    coordinator = StateCoordinator(
        WorkflowStateManager(home),
        ProgressTracker(home),
        AdaptiveLearningEngine(home),
    )
    await coordinator.clear_all()
    if include_profile:
        await JsonFile(home / PROFILE_FILENAME).delete()


def cmd_reset(args: argparse.Namespace) -> None:
    home = resolve_home(args)
    asyncio.run(_reset(home, args.include_profile))
    cleared = "workflow state and progress"
    if args.include_profile:
        cleared += " and learning profile"
    print(f"Cleared {cleared} in {home}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sherpa MCP diagnostics")
    parser.add_argument("--home", help="State directory (defaults to SHERPA_HOME)")
    sub = parser.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Summarize stored workflow, progress and profile state")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    p_profile = sub.add_parser("profile", help="Print the repaired learning profile")
    p_profile.set_defaults(func=cmd_profile)

    p_reset = sub.add_parser("reset", help="Clear workflow state and progress statistics")
    p_reset.add_argument(
        "--include-profile",
        action="store_true",
        help="Also delete the learning profile",
    )
    p_reset.set_defaults(func=cmd_reset)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
