"""Tests for tool result formatting."""

from __future__ import annotations

from notepal.ai.orchestration.formatting import (
    format_tool_result,
    format_tool_results_for_display,
    status_icon,
    tool_result_message,
)
from notepal.ai.tools.base import ToolCommand, ToolExecutionResult, ToolResult


def _ok() -> ToolExecutionResult:
    return ToolExecutionResult(ToolCommand("echo", {"text": "hi"}), ToolResult.ok({"echo": "hi"}))


def _failed() -> ToolExecutionResult:
    return ToolExecutionResult(ToolCommand("get_user_feedback"), ToolResult.fail("Question missing"))


def test_status_icons_per_style():
    assert (status_icon(True), status_icon(False)) == ("✓", "✗")
    assert (status_icon(True, "markdown"), status_icon(False, "markdown")) == ("✅", "❌")
    assert (status_icon(True, "copy"), status_icon(False, "copy")) == ("SUCCESS", "ERROR")


def test_plain_format_includes_parameters_and_result():
    record = _ok()

    text = format_tool_result(record.command, record.result)

    assert text.startswith("✓ Tool: echo\nParameters: {")
    assert '"echo": "hi"' in text


def test_plain_format_of_failure_uses_error():
    record = _failed()

    assert format_tool_result(record.command, record.result).endswith("Result: Question missing")


def test_markdown_format():
    ok, failed = _ok(), _failed()

    assert format_tool_result(ok.command, ok.result, style="markdown") == "✅ **echo** completed successfully"
    assert (
        format_tool_result(failed.command, failed.result, style="markdown")
        == "❌ **get user feedback** failed: Question missing"
    )


def test_markdown_format_adds_thought_context():
    record = ToolExecutionResult(
        ToolCommand("thought"), ToolResult.ok({"formattedThought": "🤔 → echo\n> plan"})
    )

    assert format_tool_result(record.command, record.result, style="markdown").endswith("\n🤔 → echo\n> plan")


def test_copy_format():
    record = _ok()

    text = format_tool_result(record.command, record.result, style="copy")

    assert text.startswith("TOOL EXECUTION: echo\nSTATUS: SUCCESS\nPARAMETERS:\n")
    assert "\nRESULT:\n" in text


def test_tool_result_message_folds_records():
    message = tool_result_message([_ok(), _failed()])

    assert message is not None
    assert message.role == "system"
    assert message.content.startswith("Tool execution results:\n\n✓ Tool: echo")
    assert "\n\n✗ Tool: get_user_feedback" in message.content
    assert tool_result_message([]) is None


def test_display_format_is_one_line_per_record():
    assert format_tool_results_for_display([_ok(), _failed()]).count("\n") == 1
    assert format_tool_results_for_display([]) == ""
