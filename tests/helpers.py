"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Sequence

from notepal.ai.orchestration.types import CompletionOptions, Message
from notepal.ai.tools.base import BaseTool, ToolContext


class ScriptedModel:
    """Language model stub that replays queued responses.

    Each queued item is either a string, an exception instance (raised), or a
    callable receiving ``(messages, options)`` and returning a string.
    Streaming is simulated by passing the whole response to the stream
    callback as a single chunk.

    Example:
        model = ScriptedModel(["first reply", "second reply"])
        orchestrator = AgentOrchestrator(model, registry)
    """

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        self.responses: list[Any] = list(responses)
        self.calls: list[list[Message]] = []

    async def complete(self, messages: Sequence[Message], options: CompletionOptions) -> str:
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedModel ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(messages, options)
            if asyncio.iscoroutine(item):
                item = await item
        if options.stream_callback is not None and item:
            outcome = options.stream_callback(item)
            if asyncio.iscoroutine(outcome):
                await outcome
        return item


class EchoTool(BaseTool):
    """Tool returning its text parameter; records every call."""

    name = "echo"
    description = "Repeat the given text."
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self, on_run: Callable[[dict[str, Any], ToolContext], None] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._on_run = on_run

    def run(self, params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self.calls.append(dict(params))
        if self._on_run is not None:
            self._on_run(params, context)
        return {"echo": params["text"]}


def tool_call(action: str, **parameters: Any) -> str:
    """Render a fenced tool command the way the model writes one."""

    return "```json\n" + json.dumps({"action": action, "parameters": parameters}) + "\n```"


def thought_call(thought: str, next_tool: str) -> str:
    return "```json\n" + json.dumps({"thought": thought, "nextTool": next_tool}) + "\n```"
