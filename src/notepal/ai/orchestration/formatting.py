"""Formatting of tool results for the model, the chat display and copying."""

from __future__ import annotations

from typing import Iterable, Literal

from ..prompts import stringify
from ..tools.base import ToolCommand, ToolExecutionResult, ToolResult
from .types import Message

__all__ = [
    "FormatStyle",
    "format_tool_result",
    "format_tool_results_for_display",
    "tool_result_message",
]

FormatStyle = Literal["plain", "markdown", "copy"]

_STATUS = {
    "plain": ("✓", "✗"),
    "markdown": ("✅", "❌"),
    "copy": ("SUCCESS", "ERROR"),
}


def status_icon(success: bool, style: FormatStyle = "plain") -> str:
    ok, failed = _STATUS[style]
    return ok if success else failed


def _result_context(command: ToolCommand, result: ToolResult) -> str:
    if not result.success or not isinstance(result.data, dict):
        return ""
    if command.action == "thought" and result.data.get("formattedThought"):
        return "\n" + str(result.data["formattedThought"])
    if command.action == "get_user_feedback" and result.data.get("question"):
        return f": {result.data['question']}"
    return ""


def format_tool_result(
    command: ToolCommand,
    result: ToolResult,
    *,
    style: FormatStyle = "plain",
) -> str:
    status = status_icon(result.success, style)
    outcome = stringify(result.data) if result.success else (result.error or "Unknown error")
    if style == "markdown":
        action = command.action.replace("_", " ")
        verb = "completed successfully" if result.success else f"failed: {outcome}"
        return f"{status} **{action}** {verb}{_result_context(command, result)}"
    if style == "copy":
        return (
            f"TOOL EXECUTION: {command.action}\nSTATUS: {status}\n"
            f"PARAMETERS:\n{stringify(command.parameters)}\nRESULT:\n{outcome}"
        )
    return (
        f"{status} Tool: {command.action}\n"
        f"Parameters: {stringify(command.parameters)}\nResult: {outcome}"
    )


def tool_result_message(records: Iterable[ToolExecutionResult]) -> Message | None:
    """Fold tool results into one synthetic system message for the next model call."""

    body = "\n\n".join(format_tool_result(r.command, r.result) for r in records)
    if not body:
        return None
    return Message.system(f"Tool execution results:\n\n{body}")


def format_tool_results_for_display(records: Iterable[ToolExecutionResult]) -> str:
    lines = [format_tool_result(r.command, r.result, style="markdown") for r in records]
    return "\n".join(lines)
