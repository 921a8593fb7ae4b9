"""Agent orchestrator: the budgeted tool-execution loop.

One user request becomes a sequence of model calls and tool dispatches:

1. call the model on the accumulated context;
2. parse tool commands out of the response;
3. dispatch them in order, folding each result back into the context as a
   synthetic system message;
4. repeat until the model stops asking for tools, marks the task finished,
   waits for the user, or a budget runs out.

The task status moves ``idle -> running -> {completed | stopped |
limit_reached | waiting_for_user}`` exactly once per invocation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from ...services.settings import AgentModeSettings
from ..prompts import CONTINUATION_PROMPT
from ..tools.base import ToolCommand, ToolContext, ToolExecutionResult
from ..tools.registry import ToolRegistry
from ..tools.user_feedback import is_awaiting_user
from .cancellation import CancellationToken, TurnCancelledError
from .command_parser import CommandParser
from .errors import AgentError, ModelCallError, ModelTimeoutError
from .formatting import tool_result_message
from .reasoning import extract_reasoning
from .types import (
    CompletionOptions,
    LanguageModel,
    Message,
    StreamCallback,
    TaskState,
    TaskStatus,
    TurnResult,
)

__all__ = ["AgentOrchestrator"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _LoopState:
    """Mutable bookkeeping for one invocation."""

    status: TaskStatus
    messages: list[Message]
    contents: list[str] = field(default_factory=list)
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    pending: list[ToolCommand] = field(default_factory=list)
    iterations: int = 0


def _is_finishing(record: ToolExecutionResult) -> bool:
    if record.command.finished:
        return True
    data = record.result.data
    return (
        record.command.action == "thought"
        and record.result.success
        and isinstance(data, dict)
        and data.get("finished") is True
    )


class AgentOrchestrator:
    """Runs agent turns against a language model and a tool registry.

    The orchestrator holds no per-turn state, so one instance can serve a
    whole session; the one-turn-at-a-time policy is enforced by the caller
    (see :class:`notepal.chat.session.ChatSession`).
    """

    def __init__(
        self,
        model: LanguageModel,
        registry: ToolRegistry,
        *,
        parser: CommandParser | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._model = model
        self._registry = registry
        self._parser = parser or CommandParser()
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def parser(self) -> CommandParser:
        return self._parser

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run_turn(
        self,
        context: Sequence[Message],
        *,
        settings: AgentModeSettings,
        cancel_token: CancellationToken | None = None,
        stream_callback: StreamCallback | None = None,
    ) -> TurnResult:
        """Run one agent loop over ``context`` (system, reference, history, user).

        Returns:
            The turn outcome. A stopped turn has empty content and no tool
            results.

        Raises:
            ModelTimeoutError: A single model call exceeded ``timeout_ms``.
            ModelCallError: The model or its transport failed.
        """
        state = _LoopState(
            status=TaskStatus(max_tool_executions=settings.max_tool_calls),
            messages=list(context),
        )
        return await self._run(state, settings, cancel_token or CancellationToken(), stream_callback)

    async def continue_turn(
        self,
        previous: TurnResult,
        *,
        settings: AgentModeSettings,
        additional_tool_calls: int | None = None,
        cancel_token: CancellationToken | None = None,
        stream_callback: StreamCallback | None = None,
    ) -> TurnResult:
        """Resume a turn that stopped in ``limit_reached`` with a larger tool budget.

        Pending commands from ``previous`` are dispatched first; tool results
        and content accumulate onto the previous ones.
        """
        if previous.state is not TaskState.LIMIT_REACHED:
            raise ValueError(f"Only limit_reached turns can be continued, not {previous.state.value}")
        extra = settings.max_tool_calls if additional_tool_calls is None else additional_tool_calls
        if extra < 1:
            raise ValueError("additional_tool_calls must be >= 1")
        count = previous.task_status.tool_execution_count
        state = _LoopState(
            status=TaskStatus(max_tool_executions=count + extra, tool_execution_count=count),
            messages=list(previous.context),
            contents=[previous.content] if previous.content else [],
            tool_results=list(previous.tool_results),
        )
        LOGGER.debug(
            "Continuing turn with %d pending command(s), budget %d",
            len(previous.pending_commands),
            state.status.max_tool_executions,
        )
        return await self._run(
            state,
            settings,
            cancel_token or CancellationToken(),
            stream_callback,
            pending=list(previous.pending_commands),
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    async def _run(
        self,
        state: _LoopState,
        settings: AgentModeSettings,
        token: CancellationToken,
        stream_callback: StreamCallback | None,
        *,
        pending: Sequence[ToolCommand] = (),
    ) -> TurnResult:
        state.status.transition_to(TaskState.RUNNING)
        try:
            if pending:
                outcome = await self._dispatch_round(state, pending, token)
                if outcome is not None:
                    return self._finish(state, outcome)
                state.messages.append(Message.system(CONTINUATION_PROMPT))

            while True:
                if state.iterations >= settings.max_iterations:
                    LOGGER.warning(
                        "Agent turn reached max iterations (%d) without finishing",
                        settings.max_iterations,
                    )
                    return self._finish(state, TaskState.LIMIT_REACHED)

                token.raise_if_cancelled()
                raw = await self._call_model(state.messages, settings, token, stream_callback)
                state.iterations += 1
                LOGGER.debug("Model call %d returned %d chars", state.iterations, len(raw))

                if not settings.enabled:
                    if raw.strip():
                        state.contents.append(raw.strip())
                    return self._finish(state, TaskState.COMPLETED)

                parsed = self._parser.parse(raw)
                if parsed.text:
                    state.contents.append(parsed.text)
                if not parsed.commands:
                    return self._finish(state, TaskState.COMPLETED)

                state.messages.append(Message.assistant(raw))
                outcome = await self._dispatch_round(state, parsed.commands, token)
                if outcome is not None:
                    return self._finish(state, outcome)
                state.messages.append(Message.system(CONTINUATION_PROMPT))
        except TurnCancelledError as exc:
            LOGGER.info("Agent turn stopped: %s", exc)
            state.status.transition_to(TaskState.STOPPED)
            return TurnResult(
                content="",
                task_status=state.status,
                iterations=state.iterations,
            )

    async def _dispatch_round(
        self,
        state: _LoopState,
        commands: Sequence[ToolCommand],
        token: CancellationToken,
    ) -> TaskState | None:
        """Dispatch ``commands`` in order; return a terminal state or ``None`` to keep looping."""

        round_results: list[ToolExecutionResult] = []
        for index, command in enumerate(commands):
            token.raise_if_cancelled()
            if state.status.remaining_tool_calls <= 0:
                state.pending = list(commands[index:])
                LOGGER.warning(
                    "Tool budget exhausted (%d/%d); %d command(s) left pending",
                    state.status.tool_execution_count,
                    state.status.max_tool_executions,
                    len(state.pending),
                )
                return TaskState.LIMIT_REACHED

            LOGGER.debug("Dispatching tool %s (%s)", command.action, command.request_id)
            result = await self._registry.dispatch(
                command.action,
                command.parameters,
                ToolContext(request_id=command.request_id, cancel_token=token),
            )
            state.status.record_tool_execution()
            record = ToolExecutionResult(command=command, result=result)
            state.tool_results.append(record)
            round_results.append(record)
            message = tool_result_message([record])
            if message is not None:
                state.messages.append(message)

        token.raise_if_cancelled()
        if any(is_awaiting_user(record.result) for record in round_results):
            return TaskState.WAITING_FOR_USER
        if any(_is_finishing(record) for record in round_results):
            return TaskState.COMPLETED
        return None

    async def _call_model(
        self,
        messages: Sequence[Message],
        settings: AgentModeSettings,
        token: CancellationToken,
        stream_callback: StreamCallback | None,
    ) -> str:
        options = CompletionOptions(
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            stream_callback=stream_callback,
            cancel_token=token,
        )
        try:
            response = await asyncio.wait_for(
                self._model.complete(tuple(messages), options),
                timeout=settings.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            LOGGER.error("Model call exceeded %d ms", settings.timeout_ms)
            raise ModelTimeoutError(settings.timeout_ms) from exc
        except (TurnCancelledError, AgentError):
            raise
        except Exception as exc:
            LOGGER.exception("Model call failed")
            raise ModelCallError(f"Model call failed: {exc}") from exc
        return response or ""

    def _finish(self, state: _LoopState, outcome: TaskState) -> TurnResult:
        state.status.transition_to(outcome)
        LOGGER.debug(
            "Agent turn finished: %s after %d model call(s), %d tool call(s)",
            outcome.value,
            state.iterations,
            state.status.tool_execution_count,
        )
        return TurnResult(
            content="\n\n".join(part for part in state.contents if part),
            task_status=state.status,
            tool_results=list(state.tool_results),
            reasoning=extract_reasoning(state.tool_results),
            pending_commands=list(state.pending),
            context=list(state.messages),
            iterations=state.iterations,
        )
