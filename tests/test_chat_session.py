"""Tests for ChatSession turn handling and persistence."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from notepal.ai.orchestration import ModelTimeoutError, TaskState, TurnInProgressError
from notepal.chat.message_model import ChatMessage
from notepal.chat.session import ChatSession

from helpers import tool_call


@pytest.fixture
def settings_holder(agent_settings):
    return {"agent_mode": agent_settings}


@pytest.fixture
def session(orchestrator, history_store, context_builder, settings_holder) -> ChatSession:
    return ChatSession(orchestrator, history_store, context_builder, lambda: settings_holder["agent_mode"])


@pytest.mark.asyncio
async def test_completed_turn_persists_user_and_assistant(session, model, history_store):
    model.responses = ["Hello, how can I help?"]

    outcome = await session.send("Hi")

    assert outcome.state is TaskState.COMPLETED
    assert outcome.notice is None
    assert [t.sender for t in session.turns] == ["user", "assistant"]
    stored = history_store.load()
    assert [(m.sender, m.content) for m in stored] == [("user", "Hi"), ("assistant", "Hello, how can I help?")]
    assert not session.is_running()


@pytest.mark.asyncio
async def test_history_is_sent_with_next_turn(session, model):
    model.responses = ["First reply", "Second reply"]

    await session.send("One")
    await session.send("Two")

    contents = [m.content for m in model.calls[1][1:]]
    assert contents == ["One", "First reply", "Two"]


@pytest.mark.asyncio
async def test_stopped_turn_persists_nothing(session, model, history_store):
    def stop(messages, options):
        options.cancel_token.cancel()
        options.cancel_token.raise_if_cancelled()

    model.responses = [stop]

    outcome = await session.send("Never mind")

    assert outcome.state is TaskState.STOPPED
    assert outcome.notice == "Stopped."
    assert session.turns == []
    assert history_store.load() == []


@pytest.mark.asyncio
async def test_model_failure_becomes_notice(session, model, history_store):
    model.responses = [ModelTimeoutError(10)]

    outcome = await session.send("Hello?")

    assert outcome.failed
    assert outcome.result is None
    assert outcome.notice == "Error: Model call timed out after 10 ms"
    assert session.turns == []
    assert history_store.load() == []
    assert not session.is_running()


@pytest.mark.asyncio
async def test_concurrent_send_is_rejected(session, model):
    release = asyncio.Event()

    async def slow(messages, options):
        await release.wait()
        return "done"

    model.responses = [slow]
    first = asyncio.create_task(session.send("first"))
    await asyncio.sleep(0)

    assert session.is_running()
    with pytest.raises(TurnInProgressError):
        await session.send("second")

    release.set()
    outcome = await first
    assert outcome.state is TaskState.COMPLETED
    assert [t.content for t in session.turns] == ["first", "done"]


@pytest.mark.asyncio
async def test_cancel_stops_running_turn(session, model, history_store):
    started = asyncio.Event()

    async def wait_for_cancel(messages, options):
        started.set()
        await options.cancel_token.wait()
        options.cancel_token.raise_if_cancelled()

    model.responses = [wait_for_cancel]
    task = asyncio.create_task(session.send("long request"))
    await started.wait()

    assert session.cancel() is True
    outcome = await task

    assert outcome.state is TaskState.STOPPED
    assert history_store.load() == []
    assert session.cancel() is False


@pytest.mark.asyncio
async def test_limit_reached_turn_can_be_continued(session, model, history_store, settings_holder, echo_tool):
    settings_holder["agent_mode"] = replace(settings_holder["agent_mode"], max_tool_calls=1)
    model.responses = [tool_call("echo", text="a") + "\n" + tool_call("echo", text="b"), "Both done."]

    limited = await session.send("Echo twice")

    assert limited.state is TaskState.LIMIT_REACHED
    assert "Tool execution limit reached (1/1)" in limited.notice
    assert session.can_continue()

    resumed = await session.continue_last(additional_tool_calls=1)

    assert resumed.state is TaskState.COMPLETED
    assert [c["text"] for c in echo_tool.calls] == ["a", "b"]
    assert not session.can_continue()
    stored = history_store.load()
    assert len(stored) == 2
    assert stored[1].content == "Both done."
    assert stored[1].task_status.tool_execution_count == 2
    assert stored[1].message_id == limited.assistant_message.message_id


@pytest.mark.asyncio
async def test_continue_after_regenerating_older_turn_updates_that_turn(
    session, model, history_store, settings_holder, echo_tool
):
    model.responses = ["first answer", "second answer"]
    await session.send("Q1")
    await session.send("Q2")
    settings_holder["agent_mode"] = replace(settings_holder["agent_mode"], max_tool_calls=1)
    model.responses = [tool_call("echo", text="a") + "\n" + tool_call("echo", text="b"), "continued Q1 answer"]

    regenerated = await session.regenerate(1)
    assert regenerated.state is TaskState.LIMIT_REACHED
    resumed = await session.continue_last(additional_tool_calls=1)

    assert resumed.state is TaskState.COMPLETED
    assert resumed.assistant_message.message_id == regenerated.assistant_message.message_id
    assert "continued Q1 answer" in session.turns[1].content
    assert session.turns[3].content == "second answer"
    stored = history_store.load()
    assert [m.content for m in stored] == [m.content for m in session.turns]
    assert stored[3].content == "second answer"


@pytest.mark.asyncio
async def test_deleting_limited_turn_drops_continuation(session, model, history_store, settings_holder):
    model.responses = ["first answer"]
    await session.send("Q1")
    settings_holder["agent_mode"] = replace(settings_holder["agent_mode"], max_tool_calls=1)
    model.responses = [tool_call("echo", text="a") + "\n" + tool_call("echo", text="b")]
    limited = await session.send("Q2")
    assert limited.state is TaskState.LIMIT_REACHED

    session.delete(3)

    assert not session.can_continue()
    outcome = await session.continue_last()
    assert outcome.notice == "There is no turn to continue."
    assert [m.content for m in history_store.load()] == ["Q1", "first answer", "Q2"]


@pytest.mark.asyncio
async def test_editing_limited_turn_drops_continuation(session, model, settings_holder):
    settings_holder["agent_mode"] = replace(settings_holder["agent_mode"], max_tool_calls=1)
    model.responses = [tool_call("echo", text="a") + "\n" + tool_call("echo", text="b")]
    await session.send("Q1")
    assert session.can_continue()

    session.edit(1, "Hand-written answer")

    assert not session.can_continue()


@pytest.mark.asyncio
async def test_continue_without_limited_turn_is_a_notice(session):
    outcome = await session.continue_last()

    assert outcome.result is None
    assert outcome.notice == "There is no turn to continue."


@pytest.mark.asyncio
async def test_waiting_for_user_is_reported(session, model):
    model.responses = [tool_call("get_user_feedback", question="Which list?")]

    outcome = await session.send("Tidy my lists")

    assert outcome.state is TaskState.WAITING_FOR_USER
    assert outcome.notice == "The assistant is waiting for your answer."


@pytest.mark.asyncio
async def test_regenerate_through_session(session, model, history_store):
    model.responses = ["Old answer", "New answer"]
    await session.send("Question")

    outcome = await session.regenerate(1)

    assert outcome.assistant_message.content == "New answer"
    assert [m.content for m in history_store.load()] == ["Question", "New answer"]


@pytest.mark.asyncio
async def test_regenerate_failure_keeps_turns(session, model):
    model.responses = ["Old answer", RuntimeError("offline")]
    await session.send("Question")

    outcome = await session.regenerate(1)

    assert outcome.failed
    assert [t.content for t in session.turns] == ["Question", "Old answer"]


@pytest.mark.asyncio
async def test_regenerate_rejects_bad_index(session):
    with pytest.raises(IndexError):
        await session.regenerate(0)


def test_load_edit_delete_and_clear(session, history_store):
    history_store.save(
        [ChatMessage.user("Typo", timestamp="t1"), ChatMessage(sender="assistant", content="Reply", timestamp="t2")]
    )
    session.load()

    assert session.edit(0, "Fixed") is True
    assert history_store.load()[0].content == "Fixed"
    assert session.delete(1) is True
    assert [m.content for m in history_store.load()] == ["Fixed"]

    session.clear()

    assert session.turns == []
    assert history_store.load() == []
