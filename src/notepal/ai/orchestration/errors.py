"""Exceptions raised by the agent loop and the chat turn boundary."""

from __future__ import annotations

__all__ = [
    "AgentError",
    "ModelCallError",
    "ModelTimeoutError",
    "InvalidTransitionError",
    "TurnInProgressError",
]


class AgentError(Exception):
    """Base class for failures that abort an agent turn."""


class ModelCallError(AgentError):
    """The language model or its transport failed."""


class ModelTimeoutError(ModelCallError):
    """A single model call exceeded the configured ``timeout_ms``."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Model call timed out after {timeout_ms} ms")


class InvalidTransitionError(AgentError):
    """A task status change that the state machine does not allow."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move task from {current} to {target}")


class TurnInProgressError(AgentError):
    """A new turn was requested while another one is still running."""

    def __init__(self) -> None:
        super().__init__("AI turn already in progress")
