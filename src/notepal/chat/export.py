"""Embedding of structured tool data in copied or exported message text.

Exported assistant messages carry their tool results, reasoning and task
status in a fenced ``ai-tool-execution`` block so that pasting the text
back (or re-importing an export) can restore them.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from .message_model import ChatMessage

__all__ = ["EXPORT_FENCE", "embed_tool_data", "parse_tool_data", "strip_tool_data"]

LOGGER = logging.getLogger(__name__)

EXPORT_FENCE = "ai-tool-execution"
_BLOCK_RE = re.compile(r"```ai-tool-execution\n([\s\S]*?)\n```\n?")
_LEGACY_SECTION_RE = re.compile(r"\n*\*\*Tool Execution:\*\*[^\n]*(?:\n[^\n]*\S[^\n]*)*")


def embed_tool_data(message: ChatMessage) -> str:
    """Return the message content with its structured data appended, if it has any."""

    content = strip_tool_data(message.content)
    if not message.tool_results:
        return content
    payload: dict[str, Any] = {
        "toolResults": [record.to_dict() for record in message.tool_results],
        "reasoning": message.reasoning.to_dict() if message.reasoning else None,
        "taskStatus": message.task_status.to_dict() if message.task_status else None,
    }
    body = json.dumps(payload, indent=2, ensure_ascii=False)
    return f"{content}\n\n```{EXPORT_FENCE}\n{body}\n```\n"


def parse_tool_data(text: str) -> dict[str, Any] | None:
    """Return the embedded mapping, or ``None`` when absent or malformed."""

    match = _BLOCK_RE.search(text or "")
    if match is None:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        LOGGER.warning("Ignoring malformed %s block: %s", EXPORT_FENCE, exc)
        return None
    if not isinstance(payload, dict):
        LOGGER.warning("Ignoring %s block that is not an object", EXPORT_FENCE)
        return None
    return payload


def strip_tool_data(text: str) -> str:
    """Remove embedded tool data blocks and legacy ``**Tool Execution:**`` sections."""

    cleaned = _BLOCK_RE.sub("", text or "")
    cleaned = _LEGACY_SECTION_RE.sub("", cleaned)
    return cleaned.rstrip()
