"""Reasoning extraction from ``thought`` tool results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping

from ..tools.base import ToolExecutionResult, utc_timestamp

__all__ = ["ReasoningData", "ReasoningStep", "extract_reasoning"]

ReasoningType = Literal["simple", "structured"]


def _reasoning_id() -> str:
    return f"reasoning-{uuid.uuid4().hex[:12]}"


@dataclass(slots=True, frozen=True)
class ReasoningStep:
    step: int
    title: str = ""
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "title": self.title, "content": self.content}


@dataclass(slots=True, frozen=True)
class ReasoningData:
    """Reasoning shown alongside an assistant message.

    ``simple`` reasoning carries a ``summary``; ``structured`` reasoning
    carries a ``problem`` and numbered ``steps``.
    """

    type: ReasoningType = "simple"
    id: str = field(default_factory=_reasoning_id)
    timestamp: str = field(default_factory=utc_timestamp)
    summary: str | None = None
    problem: str | None = None
    steps: tuple[ReasoningStep, ...] = ()
    depth: str | None = None
    is_collapsed: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "isCollapsed": self.is_collapsed,
        }
        if self.summary is not None:
            payload["summary"] = self.summary
        if self.problem is not None:
            payload["problem"] = self.problem
        if self.steps:
            payload["steps"] = [step.to_dict() for step in self.steps]
        if self.depth is not None:
            payload["depth"] = self.depth
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ReasoningData:
        steps = tuple(
            ReasoningStep(
                step=int(item.get("step", index + 1)),
                title=str(item.get("title", "")),
                content=str(item.get("content", "")),
            )
            for index, item in enumerate(payload.get("steps") or ())
            if isinstance(item, Mapping)
        )
        kind = "structured" if payload.get("type") == "structured" else "simple"
        return cls(
            type=kind,
            id=str(payload.get("id") or _reasoning_id()),
            timestamp=str(payload.get("timestamp") or utc_timestamp()),
            summary=payload.get("summary"),
            problem=payload.get("problem"),
            steps=steps,
            depth=payload.get("depth"),
            is_collapsed=bool(payload.get("isCollapsed", False)),
        )


def extract_reasoning(
    tool_results: Iterable[ToolExecutionResult],
    *,
    collapsed: bool = False,
) -> ReasoningData | None:
    """Build reasoning from the first successful ``thought`` result, if any."""

    for record in tool_results:
        if record.command.action != "thought" or not record.result.success:
            continue
        data = record.result.data
        if not isinstance(data, Mapping) or not data:
            continue
        timestamp = str(data.get("timestamp") or utc_timestamp())
        if data.get("reasoning") == "structured" and data.get("steps"):
            return ReasoningData.from_dict(
                {
                    "type": "structured",
                    "timestamp": timestamp,
                    "problem": data.get("problem"),
                    "steps": data.get("steps"),
                    "depth": data.get("depth"),
                    "isCollapsed": collapsed,
                }
            )
        return ReasoningData(
            type="simple",
            timestamp=timestamp,
            summary=data.get("thought") or data.get("formattedThought"),
            is_collapsed=collapsed,
        )
    return None
