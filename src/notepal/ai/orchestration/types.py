"""Core type definitions for the agent loop.

Messages are immutable values that flow into the language model; the task
status is the one mutable object, and it only changes through
:meth:`TaskStatus.transition_to` so that every state change goes through the
state machine.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping, Protocol, Sequence

from openai.types.chat import ChatCompletionMessageParam

from ..tools.base import ToolCommand, ToolExecutionResult, utc_timestamp
from .cancellation import CancellationToken
from .errors import InvalidTransitionError
from .reasoning import ReasoningData

__all__ = [
    "Message",
    "MessageRole",
    "TaskState",
    "TaskStatus",
    "TurnResult",
    "CompletionOptions",
    "LanguageModel",
    "StreamCallback",
]


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message sent to the language model.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        reasoning: Reasoning attached to an assistant message (not sent to model).
        task_status: Task status snapshot (not sent to model).
        tool_results: Tool results gathered for this message (not sent to model).
    """

    role: MessageRole
    content: str
    reasoning: ReasoningData | None = None
    task_status: TaskStatus | None = None
    tool_results: tuple[ToolExecutionResult, ...] = ()

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        return {"role": self.role, "content": self.content}  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, **extras: Any) -> Message:
        return cls(role="assistant", content=content, **extras)


# -----------------------------------------------------------------------------
# Task status state machine
# -----------------------------------------------------------------------------


class TaskState(str, enum.Enum):
    """Lifecycle states of one agent loop invocation."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    LIMIT_REACHED = "limit_reached"
    WAITING_FOR_USER = "waiting_for_user"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {TaskState.STOPPED, TaskState.COMPLETED, TaskState.LIMIT_REACHED, TaskState.WAITING_FOR_USER}
)
_TRANSITIONS: Mapping[TaskState, frozenset[TaskState]] = {
    TaskState.IDLE: frozenset({TaskState.RUNNING}),
    TaskState.RUNNING: _TERMINAL_STATES,
}


@dataclass(slots=True)
class TaskStatus:
    """Progress of one agent loop invocation.

    ``tool_execution_count`` never exceeds ``max_tool_executions``;
    :meth:`record_tool_execution` raises instead of overshooting.
    """

    max_tool_executions: int
    status: TaskState = TaskState.IDLE
    tool_execution_count: int = 0
    last_update_time: str = field(default_factory=utc_timestamp)

    @property
    def remaining_tool_calls(self) -> int:
        return self.max_tool_executions - self.tool_execution_count

    @property
    def can_continue(self) -> bool:
        return self.status is TaskState.LIMIT_REACHED

    def transition_to(self, target: TaskState) -> None:
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target
        self.last_update_time = utc_timestamp()

    def record_tool_execution(self) -> None:
        if self.status is not TaskState.RUNNING:
            raise InvalidTransitionError(self.status.value, "tool execution")
        if self.tool_execution_count + 1 > self.max_tool_executions:
            raise ValueError(
                f"Tool budget exhausted ({self.tool_execution_count}/{self.max_tool_executions})"
            )
        self.tool_execution_count += 1
        self.last_update_time = utc_timestamp()

    def snapshot(self) -> TaskStatus:
        return TaskStatus(
            max_tool_executions=self.max_tool_executions,
            status=self.status,
            tool_execution_count=self.tool_execution_count,
            last_update_time=self.last_update_time,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "toolExecutionCount": self.tool_execution_count,
            "maxToolExecutions": self.max_tool_executions,
            "lastUpdateTime": self.last_update_time,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TaskStatus:
        try:
            status = TaskState(payload.get("status", TaskState.IDLE.value))
        except ValueError:
            status = TaskState.IDLE
        maximum = int(payload.get("maxToolExecutions", 0) or 0)
        count = min(int(payload.get("toolExecutionCount", 0) or 0), maximum)
        return cls(
            max_tool_executions=maximum,
            status=status,
            tool_execution_count=count,
            last_update_time=str(payload.get("lastUpdateTime") or utc_timestamp()),
        )


# -----------------------------------------------------------------------------
# Model collaborator
# -----------------------------------------------------------------------------

StreamCallback = Callable[[str], Awaitable[None] | None]


@dataclass(slots=True, frozen=True)
class CompletionOptions:
    """Per-call options handed to :class:`LanguageModel.complete`."""

    temperature: float | None = None
    max_tokens: int | None = None
    stream_callback: StreamCallback | None = None
    cancel_token: CancellationToken | None = None


class LanguageModel(Protocol):
    """Anything that turns a message list into one assistant response.

    Raising :class:`~notepal.ai.orchestration.cancellation.TurnCancelledError`
    signals a user interruption; any other exception is treated as a model or
    transport failure.
    """

    async def complete(self, messages: Sequence[Message], options: CompletionOptions) -> str:
        ...


# -----------------------------------------------------------------------------
# Loop outcome
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class TurnResult:
    """Outcome of one :meth:`AgentOrchestrator.run_turn` invocation.

    Attributes:
        content: Cleaned assistant prose (empty when stopped).
        task_status: Final task status.
        tool_results: Every tool call executed during the invocation.
        reasoning: Reasoning extracted from the first successful thought.
        pending_commands: Commands left undispatched when the budget ran out.
        context: Message list accumulated so far, used to continue the turn.
        iterations: Number of model calls made.
    """

    content: str
    task_status: TaskStatus
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    reasoning: ReasoningData | None = None
    pending_commands: list[ToolCommand] = field(default_factory=list)
    context: list[Message] = field(default_factory=list)
    iterations: int = 0

    @property
    def state(self) -> TaskState:
        return self.task_status.status

    @property
    def stopped(self) -> bool:
        return self.task_status.status is TaskState.STOPPED

    def to_message(self) -> Message:
        return Message.assistant(
            self.content,
            reasoning=self.reasoning,
            task_status=self.task_status.snapshot(),
            tool_results=tuple(self.tool_results),
        )
