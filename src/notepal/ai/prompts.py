"""Prompt templates for the note assistant.

The agent prompt tells the model which tools exist and how to request them
(JSON objects with an ``action`` field); the continuation prompt is appended
after every tool round.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant inside a note-taking app."

AGENT_SYSTEM_PROMPT_TEMPLATE = """\
You are an assistant in a note-taking app with access to tools. Always start by \
using the 'thought' tool to outline your plan before executing actions, and \
reason about tool results before proceeding.

Available tools:
{tool_descriptions}

When using tools, respond ONLY with a JSON object using this parameter framework:
{{
  "action": "tool_name",
  "parameters": {{ /* tool-specific parameters */ }},
  "requestId": "unique_id",
  "finished": false
}}
Set "finished": true on your last command once the whole request is done."""

CONTINUATION_PROMPT = (
    "Continue with the remaining parts of the task. Check your progress and continue "
    "until ALL parts of the user's request are complete. Set finished: true only when "
    "everything is done."
)


def format_tool_catalogue(tools: Sequence[Mapping[str, Any]]) -> str:
    """Render ``ToolRegistry.describe()`` output as a numbered list."""

    lines: list[str] = []
    for index, tool in enumerate(tools, start=1):
        lines.append(f"{index}. {tool['name']} - {tool.get('description', '')}".rstrip(" -"))
        parameters = tool.get("parameters") or {}
        if parameters:
            required = set(tool.get("required") or ())
            for name, schema in parameters.items():
                kind = schema.get("type", "any") if isinstance(schema, Mapping) else "any"
                marker = ", required" if name in required else ""
                lines.append(f"   - {name} ({kind}{marker})")
    return "\n".join(lines) if lines else "(no tools available)"


def agent_system_prompt(tools: Sequence[Mapping[str, Any]], *, template: str | None = None) -> str:
    return (template or AGENT_SYSTEM_PROMPT_TEMPLATE).format(
        tool_descriptions=format_tool_catalogue(tools)
    )


def format_context_notes(notes: str) -> str:
    notes = (notes or "").strip()
    return f"\n\nContext Notes:\n{notes}" if notes else ""


def format_note_reference(path: str, content: str) -> str:
    return f"Here is the content of the current note ({path}):\n\n{content}"


def stringify(value: Any) -> str:
    """JSON-encode ``value`` for prompts, falling back to ``str`` for odd payloads."""

    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
