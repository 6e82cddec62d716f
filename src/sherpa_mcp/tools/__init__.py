"""Tool registration for Sherpa MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..session import WorkflowSessionController

logger = logging.getLogger(__name__)

GuideAction = Literal["check", "done", "next", "advance", "tdd", "bug"]
FlowMode = Literal["on", "gentle", "whisper", "active", "off"]
CelebrationChoice = Literal["full", "minimal", "whisper", "off"]


@dataclass(slots=True)
class ToolHandles:
    guide: Any
    approach: Any
    flow: Any


def register_tools(server: FastMCP, *, controller: WorkflowSessionController) -> ToolHandles:
    """Register Sherpa's MCP tools on the server."""

    async def _guide(
        action: GuideAction = "check",
        completed: str | None = None,
        context: str | None = None,
        ctx: Context | None = None,
    ) -> str:
        """Get the next workflow step, record a completed step, or switch phase."""

        text = await controller.guide(action, completed=completed, context=context)
        session = controller.session
        _emit_log(
            ctx,
            "info",
            "Guide action handled",
            extra={
                "action": action,
                "workflow": session.workflow_id,
                "phase_index": session.phase_index,
            },
        )
        return text

    async def _approach(set: str = "list", ctx: Context | None = None) -> str:
        """List workflows or switch to one by key."""

        previous = controller.session.workflow_id
        text = await controller.approach(set)
        _emit_log(
            ctx,
            "info" if set != "list" else "debug",
            "Approach handled",
            extra={"requested": set, "previous": previous, "current": controller.session.workflow_id},
        )
        return text

    async def _flow(
        mode: FlowMode | None = None,
        celebration: CelebrationChoice | None = None,
        ctx: Context | None = None,
    ) -> str:
        """Change flow mode intensity or celebration level."""

        text = await controller.flow(mode, celebration=celebration)
        _emit_log(ctx, "info", "Flow settings handled", extra={"mode": mode, "celebration": celebration})
        return text

    tool_guide = server.tool(
        name="guide",
        description=(
            "Your workflow guide. `check` shows the current phase and next steps, "
            "`done` records what you just completed (pass `completed`), `next` picks a "
            "workflow from `context`, `advance` moves to the next phase manually, and "
            "`tdd` / `bug` jump straight into those workflows."
        ),
    )(_guide)

    tool_approach = server.tool(
        name="approach",
        description=(
            "List available workflows (`set=list`) or switch to one by key, for example "
            "`set=tdd`. Switching restarts at the first phase."
        ),
    )(_approach)

    tool_flow = server.tool(
        name="flow",
        description=(
            "Turn flow mode on or off, choose hint intensity (gentle, whisper, active), "
            "or set the celebration level (full, minimal, whisper, off)."
        ),
    )(_flow)

    return ToolHandles(guide=tool_guide, approach=tool_approach, flow=tool_flow)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
