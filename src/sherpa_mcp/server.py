"""FastMCP server bootstrap for Sherpa."""

import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .behavior import AdaptiveLearningEngine, ProgressTracker
from .config import SherpaSettings, get_settings
from .logsink import logger_sink
from .session import WorkflowSessionController
from .state import StateCoordinator, WorkflowStateManager
from .storage import RetryPolicy
from .workflows import (
    COMPLETION_RULES,
    CompletionRulesError,
    PhaseCompletionDetector,
    WorkflowLoader,
    load_rules,
)
from .tools import register_tools

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_FILENAME = "sherpa.log"

GUIDE_TEXT = """# Sherpa workflow guide

1. `approach` with `set=list` shows the available workflows.
2. `approach` with `set=<key>` starts one at its first phase.
3. `guide check` shows the current phase and suggested steps.
4. `guide done` with `completed="what you did"` records progress; phases
   advance automatically once the work looks complete.
5. `guide advance` moves on manually; `guide next` with a `context` lets Sherpa
   pick a workflow for you.
6. `flow` adjusts hint intensity and celebration level.

Progress, streaks and learned preferences persist between sessions.
"""


def configure_logging(level: str, log_dir: Path | None = None) -> None:
    """Configure root logging for the Sherpa server.

    Records go to stderr (stdout carries the MCP stdio transport) and, when
    ``log_dir`` is writable, to a daily rotating file.
    """

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_error: OSError | None = None
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(
                TimedRotatingFileHandler(
                    log_dir / LOG_FILENAME, when="midnight", backupCount=7, encoding="utf-8"
                )
            )
        except OSError as exc:
            file_error = exc

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    if file_error is not None:
        logging.getLogger(__name__).warning("File logging disabled: %s", file_error)


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _completion_detector(settings: SherpaSettings) -> PhaseCompletionDetector:
    rules = COMPLETION_RULES
    if settings.completion_rules_path is not None:
        try:
            rules = load_rules(settings.completion_rules_path)
        except CompletionRulesError as exc:
            logging.getLogger(__name__).warning(
                "Using built-in completion rules: %s", exc, extra={"rules_version": rules.version}
            )
    return PhaseCompletionDetector(rules)


def build_controller(settings: SherpaSettings) -> WorkflowSessionController:
    """Wire the state owners, coordinator and session controller."""

    home = settings.home
    sink = logger_sink(logging.getLogger("sherpa_mcp.state"))
    workflow_state = WorkflowStateManager(
        home, max_age=timedelta(hours=settings.state_max_age_hours), log=sink
    )
    progress = ProgressTracker(home, log=logger_sink(logging.getLogger("sherpa_mcp.progress")))
    learning = AdaptiveLearningEngine(
        home,
        log=logger_sink(logging.getLogger("sherpa_mcp.learning")),
        retry_policy=RetryPolicy(
            max_attempts=settings.save_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
    )
    coordinator = StateCoordinator(workflow_state, progress, learning, log=sink)
    workflows = WorkflowLoader(settings.resolved_workflow_paths).load_all()
    return WorkflowSessionController(
        workflows,
        coordinator,
        detector=_completion_detector(settings),
    )


def create_server(
    settings: Optional[SherpaSettings] = None,
    controller: WorkflowSessionController | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with tools and resources."""

    settings = settings or get_settings()
    controller = controller or build_controller(settings)
    load_result = _run_sync(controller.start())

    server = FastMCP(
        name="Sherpa MCP",
        version=__version__,
        instructions=(
            "Sherpa guides development work through multi-phase workflows (TDD, bug "
            "hunting, refactoring and more), tracks progress and streaks, and adapts "
            "its hints to how you work. Call `guide check` to get started."
        ),
    )

    handles = register_tools(server, controller=controller)

    def status_payload() -> dict[str, Any]:
        snapshot = controller.status()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "home": str(settings.home),
            "workflows": {
                "count": len(controller.workflows),
                "keys": sorted(controller.workflows),
            },
            "loaded": {
                "workflow_state": load_result.workflow_state is not None,
                "progress": load_result.progress_loaded,
                "learning": load_result.learning_loaded,
            },
            **snapshot,
        }

    @server.resource(
        "resource://sherpa/status",
        name="sherpa_status",
        title="Sherpa MCP Status",
        description="Current workflow, progress and learning state.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource() -> str:
        """Return a JSON string summarizing the runtime state."""

        return json.dumps(status_payload())

    @server.resource(
        "resource://sherpa/guide",
        name="sherpa_guide",
        title="Sherpa Usage Guide",
        description="How to drive workflows with the Sherpa tools.",
        mime_type="text/markdown",
        tags={"docs"},
    )
    def guide_resource() -> str:
        return GUIDE_TEXT

    setattr(server, "controller", controller)
    setattr(server, "tool_handles", handles)
    setattr(server, "load_result", load_result)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the Sherpa MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level, settings.resolved_log_dir)

    server = create_server(settings)
    controller: WorkflowSessionController = getattr(server, "controller")
    logging.getLogger(__name__).info(
        "Launching Sherpa MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "workflow_count": len(controller.workflows),
            "current_workflow": controller.session.workflow_id,
        },
    )
    try:
        server.run()
    finally:
        _run_sync(controller.shutdown())


if __name__ == "__main__":
    main()
