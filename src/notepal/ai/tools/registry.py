"""Tool registry used by the agent loop.

The registry only holds registrations. :meth:`ToolRegistry.dispatch` looks
a tool up, validates the parameters against the tool's JSON Schema and runs
it; every failure along the way comes back as a failed
:class:`~notepal.ai.tools.base.ToolResult` rather than an exception.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .base import Tool, ToolContext, ToolResult
from .errors import (
    DuplicateToolError,
    ErrorCode,
    InvalidParameterError,
    MissingParameterError,
    ToolError,
    ToolNotFoundError,
)

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Tool name.
        tool: The tool implementation.
        schema: Parameter schema, ``{"type": "object"}`` when the tool declares none.
        validator: Compiled validator for ``schema``.
        metadata: Additional registration metadata.
    """

    name: str
    tool: Tool
    schema: dict[str, Any]
    validator: Draft202012Validator
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def required(self) -> tuple[str, ...]:
        required = self.schema.get("required") or ()
        return tuple(str(item) for item in required)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for managing tool registrations.

    Example:
        registry = ToolRegistry()
        registry.register(ThoughtTool())
        result = await registry.dispatch("thought", {"thought": "...", "nextTool": "finished"})
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Args:
            tool: The tool to register.
            allow_override: If True, replaces an existing registration.
            metadata: Additional metadata to store with the registration.

        Returns:
            The tool registration record.

        Raises:
            DuplicateToolError: If the name is taken and allow_override is False.
            ValueError: If the tool has no name or its parameter schema is invalid.
        """
        name = (getattr(tool, "name", "") or "").strip()
        if not name:
            raise ValueError("Tools must declare a non-empty name")
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        schema = dict(getattr(tool, "parameters", None) or {"type": "object"})
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as exc:
            raise ValueError(f"Tool '{name}' has an invalid parameter schema: {exc.message}") from exc

        registration = ToolRegistration(
            name=name,
            tool=tool,
            schema=schema,
            validator=Draft202012Validator(schema),
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def unregister(self, name: str) -> bool:
        """Unregister a tool by name; returns False when it was not registered."""
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def names(self) -> list[str]:
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        """Return name/description/parameters/required for prompt rendering."""
        described: list[dict[str, Any]] = []
        for registration in self._tools.values():
            tool = registration.tool
            described.append(
                {
                    "name": registration.name,
                    "description": getattr(tool, "description", "") or "",
                    "parameters": dict(registration.schema.get("properties") or {}),
                    "required": list(registration.required),
                }
            )
        return described

    async def dispatch(
        self,
        name: str,
        params: Mapping[str, Any] | None,
        context: ToolContext | None = None,
    ) -> ToolResult:
        """Look up, validate and execute a tool.

        Never raises for tool-level problems: unknown tools, missing or
        invalid parameters and exceptions raised by the tool all produce a
        failed :class:`ToolResult`.
        """
        registration = self._tools.get(name)
        if registration is None:
            LOGGER.warning("Dispatch requested for unknown tool %s", name)
            return ToolResult.from_error(ToolNotFoundError(name=name))

        arguments = dict(params) if isinstance(params, Mapping) else {}
        missing = tuple(key for key in registration.required if key not in arguments)
        if missing:
            LOGGER.debug("Tool %s missing parameters: %s", name, missing)
            return ToolResult.from_error(MissingParameterError(parameters=missing))

        violation = next(iter(registration.validator.iter_errors(arguments)), None)
        if violation is not None:
            location = ".".join(str(part) for part in violation.absolute_path) or None
            LOGGER.debug("Tool %s rejected parameters: %s", name, violation.message)
            return ToolResult.from_error(
                InvalidParameterError(
                    message=f"Invalid parameters for {name}: {violation.message}",
                    parameter=location,
                    expected=str(violation.validator),
                )
            )

        try:
            outcome = registration.tool.execute(arguments, context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except ToolError as exc:
            LOGGER.debug("Tool %s raised %s", name, exc)
            return ToolResult.from_error(exc)
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", name)
            return ToolResult.from_error(
                ToolError(error_code=ErrorCode.INTERNAL_ERROR, message=f"Tool {name} failed: {exc}")
            )

        if not isinstance(outcome, ToolResult):
            LOGGER.debug("Tool %s returned a bare payload; wrapping it", name)
            return ToolResult.ok(outcome)
        return outcome

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
