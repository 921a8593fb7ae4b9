"""Agent loop: command parsing, tool dispatch and the task state machine."""

from .cancellation import CancellationToken, TurnCancelledError
from .command_parser import CommandParser, ParsedResponse, Segment, strip_tool_calls
from .errors import (
    AgentError,
    InvalidTransitionError,
    ModelCallError,
    ModelTimeoutError,
    TurnInProgressError,
)
from .orchestrator import AgentOrchestrator
from .reasoning import ReasoningData, extract_reasoning
from .types import (
    CompletionOptions,
    LanguageModel,
    Message,
    StreamCallback,
    TaskState,
    TaskStatus,
    TurnResult,
)

__all__ = [
    "AgentError",
    "AgentOrchestrator",
    "CancellationToken",
    "CommandParser",
    "CompletionOptions",
    "InvalidTransitionError",
    "LanguageModel",
    "Message",
    "ModelCallError",
    "ModelTimeoutError",
    "ParsedResponse",
    "ReasoningData",
    "Segment",
    "StreamCallback",
    "TaskState",
    "TaskStatus",
    "TurnCancelledError",
    "TurnInProgressError",
    "TurnResult",
    "extract_reasoning",
    "strip_tool_calls",
]
