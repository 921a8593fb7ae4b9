"""Reasoning tool: lets the model record a plan or a completion summary."""

from __future__ import annotations

from typing import Any

from .base import BaseTool, ToolContext, utc_timestamp
from .errors import InvalidParameterError

FINISHED = "finished"


class ThoughtTool(BaseTool):
    """Record a reasoning step and name the next tool (or ``finished``)."""

    name = "thought"
    description = (
        "Plan your approach and summarize completion. Use at start (planning) and "
        'end (summary). Set nextTool to "finished" when the task is complete.'
    )
    parameters = {
        "type": "object",
        "properties": {
            "thought": {"type": "string", "description": "The reasoning step or summary to record"},
            "nextTool": {
                "type": "string",
                "description": 'Next tool name or "finished" when the task is complete',
            },
            "nextActionDescription": {
                "type": "string",
                "description": "Brief description of the next step or completion status",
            },
            "step": {"type": "integer", "minimum": 1},
            "totalSteps": {"type": "integer", "minimum": 1},
        },
        "required": ["thought", "nextTool"],
    }

    def validate(self, params: dict[str, Any]) -> None:
        for key in ("thought", "nextTool"):
            if not str(params.get(key, "")).strip():
                raise InvalidParameterError(
                    message=f'Parameter "{key}" must be a non-empty string.',
                    parameter=key,
                    expected="non-empty string",
                )

    def run(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        thought = params["thought"].strip()
        next_tool = params["nextTool"].strip()
        description = (params.get("nextActionDescription") or "").strip() or None
        finished = next_tool.lower() == FINISHED
        step = params.get("step")
        total = params.get("totalSteps")
        return {
            "thought": thought,
            "step": step,
            "totalSteps": total,
            "timestamp": utc_timestamp(),
            "nextTool": next_tool,
            "nextActionDescription": description,
            "finished": finished,
            "formattedThought": render_thought(thought, next_tool, finished, step, total),
        }


def render_thought(
    thought: str,
    next_tool: str,
    finished: bool,
    step: int | None = None,
    total: int | None = None,
) -> str:
    if step and total:
        prefix = f"Step {step}/{total} "
    elif step:
        prefix = f"Step {step} "
    else:
        prefix = ""
    header = f"✅ {prefix}Complete" if finished else f"\U0001f914 {prefix}→ {next_tool}"
    return f"{header}\n> {thought}"


__all__ = ["FINISHED", "ThoughtTool", "render_thought"]
