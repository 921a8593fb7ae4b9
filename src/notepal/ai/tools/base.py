"""Base classes and value types for assistant tools.

A tool is anything satisfying the :class:`Tool` protocol: a name, a
description, a JSON Schema describing its parameters and an ``execute``
callable returning a :class:`ToolResult` (directly or as an awaitable).
:class:`BaseTool` is the convenience base class used by the bundled tools;
it converts :class:`~notepal.ai.tools.errors.ToolError` and unexpected
exceptions into failed results.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, ClassVar, Mapping, Protocol, runtime_checkable

from .errors import ErrorCode, ToolError

if TYPE_CHECKING:  # pragma: no cover
    from ..orchestration.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string with a ``Z`` suffix."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# -----------------------------------------------------------------------------
# Commands and results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCommand:
    """A structured tool request extracted from model output."""

    action: str
    parameters: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    finished: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": self.action,
            "parameters": dict(self.parameters),
        }
        if self.request_id is not None:
            payload["requestId"] = self.request_id
        if self.finished:
            payload["finished"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolCommand":
        parameters = payload.get("parameters")
        request_id = payload.get("requestId")
        return cls(
            action=str(payload.get("action", "")),
            parameters=dict(parameters) if isinstance(parameters, Mapping) else {},
            request_id=str(request_id) if request_id is not None else None,
            finished=bool(payload.get("finished", False)),
        )


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of a single tool execution.

    Attributes:
        success: Whether the tool completed successfully.
        data: Result payload (any JSON-compatible value).
        error: Human-readable error message when ``success`` is false.
    """

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "ToolResult":
        return cls(success=False, data=data, error=error)

    @classmethod
    def from_error(cls, exc: ToolError) -> "ToolResult":
        """Convert a :class:`ToolError` into a failed result keeping its details."""

        return cls(success=False, data=exc.to_dict(), error=exc.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolResult":
        error = payload.get("error")
        return cls(
            success=bool(payload.get("success", False)),
            data=payload.get("data"),
            error=str(error) if error is not None else None,
        )


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """One persisted record of a single tool call within a turn."""

    command: ToolCommand
    result: ToolResult
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "result": self.result.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolExecutionResult":
        command = payload.get("command")
        result = payload.get("result")
        timestamp = payload.get("timestamp")
        return cls(
            command=ToolCommand.from_dict(command if isinstance(command, Mapping) else {}),
            result=ToolResult.from_dict(result if isinstance(result, Mapping) else {}),
            timestamp=str(timestamp) if timestamp else utc_timestamp(),
        )


# -----------------------------------------------------------------------------
# Tool protocol
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolContext:
    """Runtime context provided to tool execution.

    Attributes:
        request_id: Identifier of the command being executed (for tracing).
        cancel_token: Token of the turn that dispatched the tool.
        note_path: Path of the note the user is looking at, if any.
        metadata: Free-form values supplied by the host application.
    """

    request_id: str | None = None
    cancel_token: CancellationToken | None = None
    note_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Tool(Protocol):
    """Structural interface every registered tool satisfies."""

    name: str
    description: str
    parameters: Mapping[str, Any]

    def execute(
        self, params: Mapping[str, Any], context: ToolContext | None
    ) -> ToolResult | Awaitable[ToolResult]:
        ...


class BaseTool(ABC):
    """Abstract base class for the bundled tools.

    Subclasses set ``name``, ``description`` and ``parameters`` and implement
    :meth:`run`, returning the result payload. Raising :class:`ToolError`
    produces a failed result carrying the error details; any other
    exception is logged and reported as an internal error.

    Example:
        class EchoTool(BaseTool):
            name = "echo"
            description = "Repeat the given text."
            parameters = {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            }

            def run(self, params, context):
                return {"text": params["text"]}
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    parameters: ClassVar[Mapping[str, Any]] = {"type": "object", "properties": {}}

    async def execute(
        self,
        params: Mapping[str, Any],
        context: ToolContext | None = None,
    ) -> ToolResult:
        """Execute the tool with standardized error handling.

        Args:
            params: Tool-specific parameters, already schema-validated.
            context: Runtime context, or ``None`` outside of a turn.

        Returns:
            ToolResult containing success/failure status and data or error.
        """
        context = context or ToolContext()
        params = dict(params) if params else {}
        try:
            self.validate(params)
            outcome = self.run(params, context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except ToolError as exc:
            LOGGER.debug("Tool %s reported %s", self.name, exc)
            return ToolResult.from_error(exc)
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", self.name)
            return ToolResult.from_error(
                ToolError(error_code=ErrorCode.INTERNAL_ERROR, message=f"Internal error: {exc}")
            )
        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.ok(outcome)

    @abstractmethod
    def run(self, params: dict[str, Any], context: ToolContext) -> Any:
        """Perform the tool's work and return its result payload.

        Raises:
            ToolError: For expected error conditions.
        """

    def validate(self, params: dict[str, Any]) -> None:
        """Hook for checks the JSON Schema cannot express; raise ToolError on failure."""


__all__ = [
    "BaseTool",
    "Tool",
    "ToolCommand",
    "ToolContext",
    "ToolExecutionResult",
    "ToolResult",
    "utc_timestamp",
]
