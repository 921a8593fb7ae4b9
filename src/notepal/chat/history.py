"""Durable chat history: one JSON document per conversation.

The store is the only writer of its file. Every mutation loads the whole
list, changes it and writes it back atomically; there is no locking, so
concurrent writers follow last-write-wins.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Iterable, Sequence

from ..ai.orchestration.reasoning import ReasoningData
from ..ai.orchestration.types import TaskStatus
from ..ai.tools.base import ToolExecutionResult
from ..utils.file_io import data_dir, read_text, write_text
from .message_model import ChatMessage

__all__ = ["ChatHistoryStore", "default_history_dir"]

LOGGER = logging.getLogger(__name__)
_HISTORY_DIR_ENV = "NOTEPAL_HISTORY_DIR"
_UNSAFE_CHARS_RE = re.compile(r"[^\w.-]+")


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def default_history_dir(base_dir: Path | str | None = None) -> Path:
    env_override = os.environ.get(_HISTORY_DIR_ENV)
    if base_dir is None and env_override:
        return Path(env_override).expanduser()
    if base_dir is not None:
        return Path(base_dir).expanduser()
    return data_dir() / "chats"


class ChatHistoryStore:
    """Persistence adapter for a list of :class:`ChatMessage`."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @classmethod
    def for_conversation(cls, conversation_id: str, root: Path | str | None = None) -> "ChatHistoryStore":
        name = _UNSAFE_CHARS_RE.sub("_", conversation_id.strip()) or "default"
        return cls(default_history_dir(root) / f"{name}.json")

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def load(self) -> list[ChatMessage]:
        """Return the stored messages in order.

        A missing file is an empty history. An unreadable or corrupt file is
        logged and also treated as empty.
        """
        if not self._path.exists():
            return []
        try:
            payload = json.loads(read_text(self._path))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error("Chat history %s could not be read: %s", self._path, exc)
            return []
        if not isinstance(payload, list):
            LOGGER.error("Chat history %s does not hold a list", self._path)
            return []
        messages: list[ChatMessage] = []
        for index, entry in enumerate(payload):
            if not isinstance(entry, dict):
                LOGGER.warning("Skipping malformed chat entry %d in %s", index, self._path)
                continue
            try:
                messages.append(ChatMessage.from_dict(entry))
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping chat entry %d in %s: %s", index, self._path, exc)
        return messages

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def save(self, messages: Iterable[ChatMessage]) -> Path:
        """Replace the stored history with ``messages``."""

        body = json.dumps([message.to_dict() for message in messages], indent=2, ensure_ascii=False)
        write_text(self._path, body + "\n")
        return self._path

    def add(self, message: ChatMessage) -> None:
        messages = self.load()
        messages.append(message)
        self.save(messages)
        LOGGER.debug("Appended %s message to %s", message.sender, self._path)

    def update(
        self,
        timestamp: str,
        sender: str,
        old_content: str,
        new_content: str,
        *,
        reasoning: ReasoningData | None = UNSET,
        task_status: TaskStatus | None = UNSET,
        tool_results: Sequence[ToolExecutionResult] | None = UNSET,
    ) -> bool:
        """Replace the content of the first message matching the identity triple.

        Reasoning, task status and tool results are written only when passed.
        Returns False, without writing, when nothing matches.
        """
        messages = self.load()
        for message in messages:
            if not message.matches(timestamp, sender, old_content):
                continue
            message.content = new_content
            if reasoning is not UNSET:
                message.reasoning = reasoning
            if task_status is not UNSET:
                message.task_status = task_status
            if tool_results is not UNSET:
                message.tool_results = list(tool_results or ())
            self.save(messages)
            return True
        LOGGER.debug("No %s message at %s matched for update", sender, timestamp)
        return False

    def delete(self, timestamp: str, sender: str, content: str) -> bool:
        """Remove the first message matching the identity triple."""

        messages = self.load()
        for index, message in enumerate(messages):
            if message.matches(timestamp, sender, content):
                del messages[index]
                self.save(messages)
                return True
        LOGGER.debug("No %s message at %s matched for delete", sender, timestamp)
        return False

    def update_by_id(self, message_id: str, new_content: str) -> bool:
        messages = self.load()
        for message in messages:
            if message.message_id == message_id:
                message.content = new_content
                self.save(messages)
                return True
        return False

    def delete_by_id(self, message_id: str) -> bool:
        messages = self.load()
        remaining = [message for message in messages if message.message_id != message_id]
        if len(remaining) == len(messages):
            return False
        self.save(remaining)
        return True

    def clear(self) -> None:
        self.save([])
        LOGGER.info("Cleared chat history %s", self._path)
