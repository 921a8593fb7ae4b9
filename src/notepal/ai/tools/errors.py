"""Failure types raised by assistant tools.

A tool signals an expected failure by raising :class:`ToolError`. The
registry and :class:`~notepal.ai.tools.base.BaseTool` turn it into a failed
:class:`~notepal.ai.tools.base.ToolResult`, whose ``data`` is
:meth:`ToolError.to_dict` and whose ``error`` is the plain message shown to
the model in the next round.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ErrorCode:
    """Machine-readable ``error`` values found in failed tool results."""

    TOOL_NOT_FOUND = "tool_not_found"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"
    INTERNAL_ERROR = "internal_error"


@dataclass
class ToolError(Exception):
    """Expected tool failure carrying an error code and a message for the model."""

    error_code: str
    message: str

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        payload.update({key: value for key, value in self._context().items() if value is not None})
        return payload

    def _context(self) -> dict[str, Any]:
        return {}


@dataclass
class ToolNotFoundError(ToolError):
    """A command named a tool the registry does not know."""

    error_code: str = ErrorCode.TOOL_NOT_FOUND
    message: str = ""
    name: str | None = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Tool not found: {self.name}" if self.name else "Tool not found"
        super().__post_init__()

    def _context(self) -> dict[str, Any]:
        return {"tool": self.name}


@dataclass
class InvalidParameterError(ToolError):
    """A parameter was present but its value is unusable."""

    error_code: str = ErrorCode.INVALID_PARAMETER
    message: str = "Invalid parameter value"
    parameter: str | None = None
    expected: str | None = None

    def _context(self) -> dict[str, Any]:
        return {"parameter": self.parameter, "expected": self.expected}


@dataclass
class MissingParameterError(ToolError):
    """Required parameters were absent from the command."""

    error_code: str = ErrorCode.MISSING_PARAMETER
    message: str = ""
    parameters: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.message:
            self.message = (
                "Missing required parameters: " + ", ".join(self.parameters)
                if self.parameters
                else "Required parameter is missing"
            )
        super().__post_init__()

    def _context(self) -> dict[str, Any]:
        return {"parameters": list(self.parameters) or None}


class DuplicateToolError(Exception):
    """Registration clashed with an existing tool name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


__all__ = [
    "ErrorCode",
    "ToolError",
    "ToolNotFoundError",
    "DuplicateToolError",
    "InvalidParameterError",
    "MissingParameterError",
]
