"""Tool that pauses the agent loop to ask the user a question."""

from __future__ import annotations

import uuid
from typing import Any

from .base import BaseTool, ToolContext, ToolResult, utc_timestamp
from .errors import InvalidParameterError

AWAITING_USER_KEY = "awaiting_user"


class GetUserFeedbackTool(BaseTool):
    """Prompt the user for free text or a multiple-choice answer.

    The tool does not block: it returns a pending request and the agent loop
    ends the turn in the ``waiting_for_user`` state. The user's reply arrives
    as the next chat turn.
    """

    name = "get_user_feedback"
    description = "Prompts user for text or multiple choice input during agent execution."
    parameters = {
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "The question to ask the user"},
            "type": {
                "type": "string",
                "enum": ["text", "choice"],
                "description": '"text" for free text input, "choice" for multiple choice',
            },
            "choices": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Choices for multiple choice questions (required if type is "choice")',
            },
            "allowCustomAnswer": {"type": "boolean"},
            "placeholder": {"type": "string"},
        },
        "required": ["question"],
    }

    def validate(self, params: dict[str, Any]) -> None:
        if not str(params.get("question", "")).strip():
            raise InvalidParameterError(
                message="Question parameter is required and cannot be empty",
                parameter="question",
            )
        if params.get("type") == "choice" and not params.get("choices"):
            raise InvalidParameterError(
                message='Choices parameter is required and cannot be empty when type is "choice"',
                parameter="choices",
            )

    def run(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        return ToolResult.ok(
            {
                "requestId": context.request_id or f"feedback_{uuid.uuid4().hex[:12]}",
                "status": "pending",
                AWAITING_USER_KEY: True,
                "question": params["question"].strip(),
                "type": params.get("type", "text"),
                "choices": list(params.get("choices") or []),
                "allowCustomAnswer": bool(params.get("allowCustomAnswer", False)),
                "placeholder": params.get("placeholder"),
                "startTime": utc_timestamp(),
            }
        )


def is_awaiting_user(result: ToolResult) -> bool:
    """Return True when ``result`` is a successful, still-pending feedback request."""

    data = result.data
    return bool(result.success and isinstance(data, dict) and data.get(AWAITING_USER_KEY))


__all__ = ["AWAITING_USER_KEY", "GetUserFeedbackTool", "is_awaiting_user"]
