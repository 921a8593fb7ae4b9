"""Persisted chat message model."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Mapping

from ..ai.orchestration.reasoning import ReasoningData, ReasoningStep
from ..ai.orchestration.types import Message, TaskStatus
from ..ai.tools.base import ToolExecutionResult, utc_timestamp

if TYPE_CHECKING:  # pragma: no cover
    from ..ai.orchestration.types import TurnResult

__all__ = ["ChatMessage", "ChatSender", "ReasoningData", "ReasoningStep"]

ChatSender = Literal["user", "assistant"]


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class ChatMessage:
    """One row of the conversation as shown to the user and stored on disk.

    ``(timestamp, sender, content)`` identifies a message for the history
    store's update and delete operations. ``message_id`` is a surrogate key
    for callers that keep their own references.
    """

    sender: ChatSender
    content: str
    timestamp: str = field(default_factory=utc_timestamp)
    reasoning: ReasoningData | None = None
    task_status: TaskStatus | None = None
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    message_id: str = field(default_factory=_new_id)
    streaming: bool = False

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.timestamp, self.sender, self.content)

    def matches(self, timestamp: str, sender: str, content: str) -> bool:
        return self.timestamp == timestamp and self.sender == sender and self.content == content

    def to_message(self) -> Message:
        """Convert to the transient message type sent to the model."""

        if self.sender == "user":
            return Message.user(self.content)
        return Message.assistant(self.content)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the message for persistence."""

        payload: dict[str, Any] = {
            "timestamp": self.timestamp,
            "sender": self.sender,
            "content": self.content,
        }
        if self.reasoning is not None:
            payload["reasoning"] = self.reasoning.to_dict()
        if self.task_status is not None:
            payload["taskStatus"] = self.task_status.to_dict()
        if self.tool_results:
            payload["toolResults"] = [record.to_dict() for record in self.tool_results]
        payload["id"] = self.message_id
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        sender = payload.get("sender")
        if sender not in ("user", "assistant"):
            raise ValueError(f"Unsupported sender: {sender!r}")
        reasoning = payload.get("reasoning")
        task_status = payload.get("taskStatus")
        tool_results = payload.get("toolResults") or []
        return cls(
            sender=sender,
            content=str(payload.get("content", "")),
            timestamp=str(payload.get("timestamp") or utc_timestamp()),
            reasoning=ReasoningData.from_dict(reasoning) if isinstance(reasoning, Mapping) else None,
            task_status=TaskStatus.from_dict(task_status) if isinstance(task_status, Mapping) else None,
            tool_results=[
                ToolExecutionResult.from_dict(item) for item in tool_results if isinstance(item, Mapping)
            ],
            message_id=str(payload.get("id") or _new_id()),
        )

    @classmethod
    def user(cls, content: str, *, timestamp: str | None = None) -> "ChatMessage":
        return cls(sender="user", content=content, timestamp=timestamp or utc_timestamp())

    @classmethod
    def from_turn_result(cls, result: "TurnResult", *, timestamp: str | None = None) -> "ChatMessage":
        return cls(
            sender="assistant",
            content=result.content,
            timestamp=timestamp or utc_timestamp(),
            reasoning=result.reasoning,
            task_status=result.task_status.snapshot(),
            tool_results=list(result.tool_results),
        )

    @classmethod
    def from_export(cls, text: str, *, sender: ChatSender = "assistant", timestamp: str | None = None) -> "ChatMessage":
        """Rebuild a message from copied text carrying an ``ai-tool-execution`` block."""

        from .export import parse_tool_data, strip_tool_data

        message = cls(sender=sender, content=strip_tool_data(text), timestamp=timestamp or utc_timestamp())
        embedded = parse_tool_data(text)
        if embedded is None:
            return message
        reasoning = embedded.get("reasoning")
        task_status = embedded.get("taskStatus")
        if isinstance(reasoning, Mapping):
            message.reasoning = ReasoningData.from_dict(reasoning)
        if isinstance(task_status, Mapping):
            message.task_status = TaskStatus.from_dict(task_status)
        message.tool_results = [
            ToolExecutionResult.from_dict(item)
            for item in embedded.get("toolResults") or []
            if isinstance(item, Mapping)
        ]
        return message
