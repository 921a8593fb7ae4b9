"""Unit tests for AgentOrchestrator."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import pytest

from notepal.ai.orchestration import (
    AgentOrchestrator,
    CancellationToken,
    Message,
    ModelCallError,
    ModelTimeoutError,
    TaskState,
)
from notepal.ai.prompts import CONTINUATION_PROMPT
from notepal.ai.tools import build_default_registry

from helpers import EchoTool, thought_call, tool_call


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def context() -> list[Message]:
    return [Message.system("You are a test assistant."), Message.user("Do the thing")]


def _echoes(*texts: str) -> str:
    return "Working on it.\n\n" + "\n".join(tool_call("echo", text=text) for text in texts)


# =============================================================================
# Completion paths
# =============================================================================


@pytest.mark.asyncio
async def test_response_without_commands_completes(orchestrator, model, context, agent_settings):
    model.responses = ["Just an answer."]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.COMPLETED
    assert result.content == "Just an answer."
    assert result.tool_results == []
    assert result.iterations == 1
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_tool_round_then_answer(orchestrator, model, echo_tool, context, agent_settings):
    model.responses = [_echoes("hi"), "The echo said hi."]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.COMPLETED
    assert echo_tool.calls == [{"text": "hi"}]
    assert result.task_status.tool_execution_count == 1
    assert result.content == "Working on it.\n\nThe echo said hi."
    second_call = model.calls[1]
    assert second_call[-3].role == "assistant"
    assert second_call[-2].role == "system"
    assert second_call[-2].content.startswith("Tool execution results:\n\n✓ Tool: echo")
    assert second_call[-1] == Message.system(CONTINUATION_PROMPT)


@pytest.mark.asyncio
async def test_finished_thought_ends_turn(orchestrator, model, context, agent_settings):
    model.responses = [thought_call("Everything is done", "finished")]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.COMPLETED
    assert len(model.calls) == 1
    assert result.reasoning is not None
    assert result.reasoning.summary == "Everything is done"


@pytest.mark.asyncio
async def test_finished_flag_on_command_ends_turn(orchestrator, model, echo_tool, context, agent_settings):
    payload = {"action": "echo", "parameters": {"text": "last"}, "finished": True}
    model.responses = ["```json\n" + json.dumps(payload) + "\n```"]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.COMPLETED
    assert echo_tool.calls == [{"text": "last"}]
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_user_feedback_waits_for_user(orchestrator, model, context, agent_settings):
    model.responses = [tool_call("get_user_feedback", question="Which note?")]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.WAITING_FOR_USER
    assert result.task_status.tool_execution_count == 1
    assert result.tool_results[0].result.data["question"] == "Which note?"


@pytest.mark.asyncio
async def test_disabled_agent_mode_returns_raw_text(orchestrator, model, echo_tool, context, agent_settings):
    raw = _echoes("ignored")
    model.responses = [raw]

    result = await orchestrator.run_turn(context, settings=replace(agent_settings, enabled=False))

    assert result.state is TaskState.COMPLETED
    assert result.content == raw.strip()
    assert echo_tool.calls == []


@pytest.mark.asyncio
async def test_failed_tool_is_reported_and_loop_continues(orchestrator, model, context, agent_settings):
    model.responses = [tool_call("missing_tool"), "Sorry, that tool does not exist."]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.COMPLETED
    assert result.tool_results[0].result.success is False
    assert "✗ Tool: missing_tool" in model.calls[1][-2].content


@pytest.mark.asyncio
async def test_stream_callback_receives_chunks(orchestrator, model, context, agent_settings):
    model.responses = ["streamed"]
    chunks: list[str] = []

    await orchestrator.run_turn(context, settings=agent_settings, stream_callback=chunks.append)

    assert chunks == ["streamed"]


# =============================================================================
# Budgets
# =============================================================================


@pytest.mark.asyncio
async def test_tool_budget_leaves_excess_commands_pending(orchestrator, model, echo_tool, context, agent_settings):
    model.responses = [_echoes("one", "two", "three")]

    result = await orchestrator.run_turn(context, settings=replace(agent_settings, max_tool_calls=2))

    assert result.state is TaskState.LIMIT_REACHED
    assert result.task_status.tool_execution_count == 2
    assert [call["text"] for call in echo_tool.calls] == ["one", "two"]
    assert [c.parameters["text"] for c in result.pending_commands] == ["three"]
    assert result.task_status.can_continue


@pytest.mark.asyncio
async def test_budget_exhausted_across_rounds(orchestrator, model, echo_tool, context, agent_settings):
    model.responses = [_echoes("a"), _echoes("b"), _echoes("c")]

    result = await orchestrator.run_turn(context, settings=replace(agent_settings, max_tool_calls=2))

    assert result.state is TaskState.LIMIT_REACHED
    assert result.task_status.tool_execution_count == 2
    assert len(echo_tool.calls) == 2
    assert result.iterations == 3


@pytest.mark.asyncio
async def test_zero_tool_budget_executes_nothing(orchestrator, model, echo_tool, context, agent_settings):
    model.responses = [_echoes("a")]

    result = await orchestrator.run_turn(context, settings=replace(agent_settings, max_tool_calls=0))

    assert result.state is TaskState.LIMIT_REACHED
    assert echo_tool.calls == []


@pytest.mark.asyncio
async def test_max_iterations_reached(orchestrator, model, echo_tool, context, agent_settings):
    model.responses = [_echoes(str(i)) for i in range(5)]

    result = await orchestrator.run_turn(context, settings=replace(agent_settings, max_iterations=3))

    assert result.state is TaskState.LIMIT_REACHED
    assert result.iterations == 3
    assert len(model.calls) == 3
    assert len(echo_tool.calls) == 3
    assert result.pending_commands == []


@pytest.mark.asyncio
async def test_continue_turn_runs_pending_commands_first(orchestrator, model, echo_tool, context, agent_settings):
    settings = replace(agent_settings, max_tool_calls=2)
    model.responses = [_echoes("one", "two", "three"), "All three echoed."]
    limited = await orchestrator.run_turn(context, settings=settings)

    result = await orchestrator.continue_turn(limited, settings=settings, additional_tool_calls=2)

    assert result.state is TaskState.COMPLETED
    assert [call["text"] for call in echo_tool.calls] == ["one", "two", "three"]
    assert result.task_status.tool_execution_count == 3
    assert result.task_status.max_tool_executions == 4
    assert len(result.tool_results) == 3
    assert result.content == "Working on it.\n\nAll three echoed."


@pytest.mark.asyncio
async def test_continue_turn_requires_limit_reached(orchestrator, model, context, agent_settings):
    model.responses = ["done"]
    completed = await orchestrator.run_turn(context, settings=agent_settings)

    with pytest.raises(ValueError):
        await orchestrator.continue_turn(completed, settings=agent_settings)


# =============================================================================
# Cancellation and failures
# =============================================================================


@pytest.mark.asyncio
async def test_cancel_before_start_stops_without_model_call(orchestrator, model, context, agent_settings):
    token = CancellationToken()
    token.cancel()

    result = await orchestrator.run_turn(context, settings=agent_settings, cancel_token=token)

    assert result.state is TaskState.STOPPED
    assert model.calls == []


@pytest.mark.asyncio
async def test_cancel_during_tool_lets_tool_finish(model, context, agent_settings):
    tool = EchoTool(on_run=lambda params, ctx: ctx.cancel_token.cancel())
    orchestrator = AgentOrchestrator(model, build_default_registry([tool]))
    model.responses = [_echoes("first", "second"), "never used"]

    result = await orchestrator.run_turn(context, settings=agent_settings)

    assert result.state is TaskState.STOPPED
    assert tool.calls == [{"text": "first"}]
    assert len(model.calls) == 1
    assert result.content == ""
    assert result.tool_results == []


@pytest.mark.asyncio
async def test_model_cancellation_mid_stream_stops(orchestrator, model, context, agent_settings):
    token = CancellationToken()

    def cancel_then_answer(messages, options):
        options.cancel_token.cancel()
        options.cancel_token.raise_if_cancelled()
        return "unreachable"

    model.responses = [cancel_then_answer]

    result = await orchestrator.run_turn(context, settings=agent_settings, cancel_token=token)

    assert result.state is TaskState.STOPPED


@pytest.mark.asyncio
async def test_model_timeout_raises(orchestrator, model, context, agent_settings):
    async def slow(messages, options):
        await asyncio.sleep(1)
        return "late"

    model.responses = [slow]

    with pytest.raises(ModelTimeoutError) as excinfo:
        await orchestrator.run_turn(context, settings=replace(agent_settings, timeout_ms=10))

    assert excinfo.value.timeout_ms == 10


@pytest.mark.asyncio
async def test_model_error_is_wrapped(orchestrator, model, context, agent_settings):
    model.responses = [RuntimeError("boom")]

    with pytest.raises(ModelCallError, match="boom"):
        await orchestrator.run_turn(context, settings=agent_settings)
