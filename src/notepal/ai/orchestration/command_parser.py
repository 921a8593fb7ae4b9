"""Extraction of tool commands embedded in model responses.

The model asks for tools by writing JSON objects with an ``action`` field,
either inside fenced code blocks (```json ... ```), inline in its prose, or
as the whole response. The thought shorthand ``{"thought": ..., "nextTool":
...}`` is accepted as an ``action: "thought"`` command. Parsing never fails:
anything that cannot be read as a command stays prose.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from ..tools.base import ToolCommand

__all__ = [
    "CommandParser",
    "ParsedResponse",
    "Segment",
    "command_from_payload",
    "strip_tool_calls",
]

LOGGER = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```[ \t]*(?P<lang>[\w-]*)[ \t]*\n?(?P<body>.*?)```", re.DOTALL)
_JSON_FENCE_LANGS = {"", "json", "json5", "jsonc"}
_BLANK_RUNS_RE = re.compile(r"\n{3,}")
_RESERVED_KEYS = ("action", "requestId", "finished")

SegmentType = Literal["text", "tool"]


@dataclass(slots=True, frozen=True)
class Segment:
    """A run of the response in source order: prose or one tool command."""

    type: SegmentType
    content: str
    command: ToolCommand | None = None

    @property
    def is_tool(self) -> bool:
        return self.type == "tool"


@dataclass(slots=True, frozen=True)
class ParsedResponse:
    segments: tuple[Segment, ...]
    commands: tuple[ToolCommand, ...] = ()
    text: str = ""

    @property
    def has_commands(self) -> bool:
        return bool(self.commands)


@dataclass(slots=True, frozen=True)
class _Span:
    start: int
    end: int
    commands: tuple[ToolCommand, ...] = field(default=())


def _request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def command_from_payload(payload: Any) -> ToolCommand | None:
    """Convert a decoded JSON value into a command, or ``None`` if it is not one."""

    if not isinstance(payload, Mapping):
        return None
    action = payload.get("action")
    if isinstance(action, str) and action.strip():
        parameters = payload.get("parameters")
        if not isinstance(parameters, Mapping):
            parameters = {key: value for key, value in payload.items() if key not in _RESERVED_KEYS}
        request_id = payload.get("requestId")
        return ToolCommand(
            action=action.strip(),
            parameters=dict(parameters),
            request_id=str(request_id) if request_id else _request_id(),
            finished=payload.get("finished") is True,
        )
    thought = payload.get("thought")
    next_tool = payload.get("nextTool")
    if thought and isinstance(next_tool, str) and next_tool.strip():
        parameters = {
            key: payload[key]
            for key in ("thought", "nextTool", "nextActionDescription", "step", "totalSteps")
            if payload.get(key) is not None
        }
        return ToolCommand(
            action="thought",
            parameters=parameters,
            request_id=_request_id(),
            finished=next_tool.strip().lower() == "finished",
        )
    return None


def _commands_from_value(value: Any) -> tuple[ToolCommand, ...]:
    if isinstance(value, list):
        commands = tuple(command_from_payload(item) for item in value)
        if commands and all(command is not None for command in commands):
            return commands  # type: ignore[return-value]
        return ()
    command = command_from_payload(value)
    return (command,) if command is not None else ()


class CommandParser:
    """Split a model response into prose and tool-command segments.

    Unknown action names are kept; the registry reports them when the
    command is dispatched.
    """

    def __init__(self) -> None:
        self._decoder = json.JSONDecoder()

    def parse(self, text: str | None) -> ParsedResponse:
        source = text or ""
        spans = self._whole_response(source) or self._scan(source)
        segments = self._build_segments(source, spans)
        commands = tuple(segment.command for segment in segments if segment.command is not None)
        prose = "\n\n".join(segment.content.strip() for segment in segments if not segment.is_tool)
        cleaned = _BLANK_RUNS_RE.sub("\n\n", prose).strip()
        if commands:
            LOGGER.debug("Parsed %d tool command(s): %s", len(commands), [c.action for c in commands])
        return ParsedResponse(segments=segments, commands=commands, text=cleaned)

    # ------------------------------------------------------------------
    # Span discovery
    # ------------------------------------------------------------------
    def _whole_response(self, source: str) -> list[_Span]:
        stripped = source.strip()
        if not stripped or stripped[0] not in "[{":
            return []
        try:
            value = json.loads(stripped)
        except json.JSONDecodeError:
            return []
        commands = _commands_from_value(value)
        if not commands:
            return []
        return [_Span(0, len(source), commands)]

    def _scan(self, source: str) -> list[_Span]:
        spans: list[_Span] = []
        fenced: list[tuple[int, int]] = []
        for match in FENCE_RE.finditer(source):
            fenced.append((match.start(), match.end()))
            if match.group("lang").lower() not in _JSON_FENCE_LANGS:
                continue
            body = match.group("body").strip()
            try:
                value = json.loads(body)
            except json.JSONDecodeError:
                if '"action"' in body or '"nextTool"' in body:
                    LOGGER.debug("Fenced block looks like a tool call but is not valid JSON")
                continue
            commands = _commands_from_value(value)
            if commands:
                spans.append(_Span(match.start(), match.end(), commands))
        spans.extend(self._scan_inline(source, fenced))
        spans.sort(key=lambda span: span.start)
        return spans

    def _scan_inline(self, source: str, fenced: list[tuple[int, int]]) -> list[_Span]:
        spans: list[_Span] = []
        index = source.find("{")
        while index != -1:
            region = next((r for r in fenced if r[0] <= index < r[1]), None)
            if region is not None:
                index = source.find("{", region[1])
                continue
            try:
                value, end = self._decoder.raw_decode(source, index)
            except json.JSONDecodeError:
                index = source.find("{", index + 1)
                continue
            command = command_from_payload(value)
            if command is None:
                index = source.find("{", index + 1)
                continue
            spans.append(_Span(index, end, (command,)))
            index = source.find("{", end)
        return spans

    # ------------------------------------------------------------------
    # Segment assembly
    # ------------------------------------------------------------------
    @staticmethod
    def _build_segments(source: str, spans: list[_Span]) -> tuple[Segment, ...]:
        if not spans:
            return (Segment("text", source),)
        segments: list[Segment] = []
        cursor = 0
        for span in spans:
            prose = source[cursor:span.start]
            if prose.strip():
                segments.append(Segment("text", prose))
            raw = source[span.start:span.end]
            for command in span.commands:
                segments.append(Segment("tool", raw, command))
            cursor = span.end
        tail = source[cursor:]
        if tail.strip():
            segments.append(Segment("text", tail))
        return tuple(segments)


def strip_tool_calls(text: str | None) -> str:
    """Return ``text`` with every tool command removed."""

    return CommandParser().parse(text).text
